"""Exceptions for :mod:`hsbalance.crypto`."""

from __future__ import annotations

from hsbalance.errors import BalancerError


class CryptoError(BalancerError):
    """Base error for cryptographic operations."""


class InvalidKeyError(CryptoError):
    """Raised when key material is malformed or otherwise invalid."""


class SignatureError(CryptoError):
    """Raised when a signature cannot be produced or does not verify."""
