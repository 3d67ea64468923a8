"""Digest and encoding primitives used by v2 onion services."""

from __future__ import annotations

import base64
import hashlib


def sha1_digest(data: bytes) -> bytes:
    """Compute a SHA-1 digest (20 bytes)."""

    return hashlib.sha1(data).digest()


def b32_encode(data: bytes) -> str:
    """Lower-case, unpadded base32 as used in onion addresses and descriptor ids."""

    return base64.b32encode(data).decode("ascii").rstrip("=").lower()


def b32_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 8)
    return base64.b32decode(text.upper() + padding)
