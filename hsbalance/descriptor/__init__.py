"""v2 rendezvous service descriptor codec."""

from __future__ import annotations

from .document import (
    DEFAULT_PROTOCOL_VERSIONS,
    Descriptor,
    HiddenServiceDescriptor,
    parse_descriptor,
    parse_descriptors,
    split_documents,
)
from .intropoints import IntroductionPoint, parse_introduction_points

__all__ = [
    "DEFAULT_PROTOCOL_VERSIONS",
    "Descriptor",
    "HiddenServiceDescriptor",
    "IntroductionPoint",
    "parse_descriptor",
    "parse_descriptors",
    "parse_introduction_points",
    "split_documents",
]
