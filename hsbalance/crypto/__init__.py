"""Cryptographic primitives for v2 onion service descriptors.

Thin wrappers around :pypi:`cryptography`: permanent-key handling, onion
identity derivation and the raw RSA signatures Tor uses.
"""

from __future__ import annotations

from .errors import CryptoError, InvalidKeyError, SignatureError
from .hashes import b32_decode, b32_encode, sha1_digest
from .keys import (
    FrontKey,
    load_front_key,
    normalize_onion_id,
    onion_id_from_public_key,
    permanent_id,
    public_key_der,
    public_key_from_pem,
    public_key_pem,
)
from .signing import KeyDirectory, Signer, rsa_sign_digest, rsa_verify_digest

__all__ = [
    "CryptoError",
    "FrontKey",
    "InvalidKeyError",
    "KeyDirectory",
    "SignatureError",
    "Signer",
    "b32_decode",
    "b32_encode",
    "load_front_key",
    "normalize_onion_id",
    "onion_id_from_public_key",
    "permanent_id",
    "public_key_der",
    "public_key_from_pem",
    "public_key_pem",
    "rsa_sign_digest",
    "rsa_verify_digest",
    "sha1_digest",
]
