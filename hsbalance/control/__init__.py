"""Tor control-port session used to fetch and publish descriptors."""

from __future__ import annotations

from .connection import ControlAddress, ControlConnection
from .interfaces import ControlReply, ControlSession
from .protocol import ReplyParser, encode_command, parse_protocolinfo, quote_string

__all__ = [
    "ControlAddress",
    "ControlConnection",
    "ControlReply",
    "ControlSession",
    "ReplyParser",
    "encode_command",
    "parse_protocolinfo",
    "quote_string",
]
