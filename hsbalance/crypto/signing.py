"""Signing capabilities and raw RSA signatures.

Tor signs v2 descriptors with PKCS#1 v1.5 type 1 padding applied directly to
the SHA-1 digest of the signed text, without the ASN.1 ``DigestInfo`` prefix
that :pypi:`cryptography` would add. The padding is therefore assembled here
and only the modular exponentiation uses the key numbers.
"""

from __future__ import annotations

from typing import Protocol

from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import SignatureError


class Signer(Protocol):
    """Produces a descriptor signature over ``data``."""

    def sign(self, data: bytes) -> bytes: ...


class KeyDirectory(Protocol):
    """Resolves an onion identity to its permanent public key."""

    def public_key_for(self, identity: str) -> rsa.RSAPublicKey: ...


def _modulus_len(n: int) -> int:
    return (n.bit_length() + 7) // 8


def _pad_type1(digest: bytes, k: int) -> bytes:
    ps_len = k - len(digest) - 3
    if ps_len < 8:
        raise SignatureError("key too small for digest")
    return b"\x00\x01" + b"\xff" * ps_len + b"\x00" + digest


def rsa_sign_digest(private_key: rsa.RSAPrivateKey, digest: bytes) -> bytes:
    """Sign ``digest`` with PKCS#1 v1.5 type 1 padding and no DigestInfo."""

    numbers = private_key.private_numbers()
    n = numbers.public_numbers.n
    k = _modulus_len(n)
    m = int.from_bytes(_pad_type1(digest, k), "big")
    return pow(m, numbers.d, n).to_bytes(k, "big")


def rsa_verify_digest(public_key: rsa.RSAPublicKey, signature: bytes, digest: bytes) -> bool:
    """Return ``True`` if ``signature`` is a raw PKCS#1 v1.5 signature of ``digest``."""

    numbers = public_key.public_numbers()
    k = _modulus_len(numbers.n)
    if len(signature) != k:
        return False
    s = int.from_bytes(signature, "big")
    if s >= numbers.n:
        return False
    try:
        expected = _pad_type1(digest, k)
    except SignatureError:
        return False
    return pow(s, numbers.e, numbers.n).to_bytes(k, "big") == expected
