"""RSA permanent keys and onion identities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import InvalidKeyError
from .hashes import b32_encode, sha1_digest
from .signing import rsa_sign_digest

ONION_ID_LEN = 16
PERMANENT_KEY_BITS = 1024

_ONION_ID_RE = re.compile(r"^[a-z2-7]{16}$")


def normalize_onion_id(value: str) -> str:
    """Lower-case ``value`` and strip an optional ``.onion`` suffix.

    Raises:
        ValueError: If the result is not a 16-character base32 identity.
    """

    onion = value.strip().lower()
    if onion.endswith(".onion"):
        onion = onion[: -len(".onion")]
    if not _ONION_ID_RE.match(onion):
        raise ValueError(f"invalid onion identity: {value!r}")
    return onion


def public_key_der(public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.PKCS1)


def public_key_pem(public_key: rsa.RSAPublicKey) -> str:
    pem = public_key.public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.PKCS1)
    return pem.decode("ascii").strip()


def public_key_from_pem(pem: str | bytes) -> rsa.RSAPublicKey:
    """Parse a PKCS#1 ``RSA PUBLIC KEY`` PEM block."""

    try:
        if isinstance(pem, str):
            pem = pem.encode("ascii")
        key = serialization.load_pem_public_key(pem)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError("invalid RSA public key") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidKeyError("permanent key is not an RSA key")
    return key


def permanent_id(public_key: rsa.RSAPublicKey) -> bytes:
    """The first 10 bytes of SHA-1 over the DER-encoded permanent key."""

    return sha1_digest(public_key_der(public_key))[:10]


def onion_id_from_public_key(public_key: rsa.RSAPublicKey) -> str:
    return b32_encode(permanent_id(public_key))


@dataclass(frozen=True)
class FrontKey:
    """Private key of the front identity.

    Satisfies both :class:`~hsbalance.crypto.signing.Signer` and
    :class:`~hsbalance.crypto.signing.KeyDirectory`.
    """

    private_key: rsa.RSAPrivateKey

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    @property
    def identity(self) -> str:
        return onion_id_from_public_key(self.public_key)

    def sign(self, data: bytes) -> bytes:
        return rsa_sign_digest(self.private_key, sha1_digest(data))

    def public_key_for(self, identity: str) -> rsa.RSAPublicKey:
        if normalize_onion_id(identity) != self.identity:
            raise InvalidKeyError(f"no key for {identity}")
        return self.public_key


def load_front_key(path: str | Path) -> FrontKey:
    """Load a PEM-encoded RSA private key (e.g. Tor's ``private_key`` file)."""

    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise InvalidKeyError(f"unable to read key file {path}: {e}") from e
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError(f"unable to load private key from {path}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidKeyError("front key must be an RSA key")
    if key.key_size != PERMANENT_KEY_BITS:
        raise InvalidKeyError(f"front key must be {PERMANENT_KEY_BITS}-bit RSA, got {key.key_size}")
    return FrontKey(private_key=key)
