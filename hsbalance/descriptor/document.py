"""Rendezvous service descriptors (version 2).

Two views of the same document format:

- :class:`HiddenServiceDescriptor` is a descriptor received from the network,
  parsed but otherwise untouched.
- :class:`Descriptor` is a descriptor built for the front identity. It starts
  unsigned, receives its signature exactly once and is then rendered with
  :meth:`Descriptor.to_bytes`.
"""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from cryptography.hazmat.primitives.asymmetric import rsa

from hsbalance.crypto import (
    InvalidKeyError,
    b32_encode,
    onion_id_from_public_key,
    permanent_id,
    public_key_from_pem,
    public_key_pem,
    rsa_verify_digest,
    sha1_digest,
)
from hsbalance.errors import DescriptorError

from .intropoints import IntroductionPoint, parse_introduction_points

logger = structlog.get_logger(__name__)

DESCRIPTOR_VERSION = 2
DEFAULT_PROTOCOL_VERSIONS = (2, 3)
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_DOC_KEYWORD = "rendezvous-service-descriptor"
_SIGNATURE_LINE = "\nsignature\n"
_SECONDS_PER_DAY = 86400


def _wrap_base64(data: bytes, *, width: int = 64) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return "\n".join(encoded[i : i + width] for i in range(0, len(encoded), width))


def _decode_base64(body: str) -> bytes:
    try:
        return base64.b64decode("".join(body.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DescriptorError("invalid base64 object") from e


def _iter_items(text: str):
    """Yield ``(keyword, args, object_type, object_text)`` for each item.

    ``object_text`` is the full ``-----BEGIN ...-----`` block including its
    delimiters, or ``None`` when the item carries no object.
    """

    lines = text.split("\n")
    i = 0
    while i < len(lines):
        line = lines[i].rstrip("\r")
        i += 1
        if not line.strip():
            continue
        keyword, _, args = line.partition(" ")
        obj_type = None
        obj_text = None
        if i < len(lines) and lines[i].startswith("-----BEGIN "):
            begin = lines[i].rstrip("\r")
            obj_type = begin[len("-----BEGIN ") : -len("-----")]
            end = f"-----END {obj_type}-----"
            block = [begin]
            i += 1
            while i < len(lines) and lines[i].rstrip("\r") != end:
                block.append(lines[i].rstrip("\r"))
                i += 1
            if i >= len(lines):
                raise DescriptorError(f"unterminated {obj_type} object")
            block.append(end)
            i += 1
            obj_text = "\n".join(block)
        yield keyword, args.strip(), obj_type, obj_text


def _object_body(obj_text: str) -> str:
    return "\n".join(obj_text.split("\n")[1:-1])


@dataclass(frozen=True)
class HiddenServiceDescriptor:
    """A v2 descriptor fetched from the network."""

    descriptor_id: str
    version: int
    permanent_key_pem: str
    secret_id_part: str
    publication_time: datetime
    protocol_versions: tuple[int, ...]
    introduction_points_block: bytes
    signature: bytes
    signed_body: bytes = field(repr=False)

    def permanent_key(self) -> rsa.RSAPublicKey:
        try:
            return public_key_from_pem(self.permanent_key_pem)
        except InvalidKeyError as e:
            raise DescriptorError(f"descriptor {self.descriptor_id} has an invalid permanent key") from e

    def onion_id(self) -> str:
        """Identity of the service that owns this descriptor, from its permanent key."""

        return onion_id_from_public_key(self.permanent_key())

    def verify(self) -> bool:
        return rsa_verify_digest(self.permanent_key(), self.signature, sha1_digest(self.signed_body))

    def introduction_points(self) -> list[IntroductionPoint]:
        return parse_introduction_points(self.introduction_points_block)


def parse_descriptor(text: str) -> HiddenServiceDescriptor:
    """Parse a single descriptor document.

    Raises:
        DescriptorError: If a required item is missing or malformed.
    """

    fields: dict[str, tuple[str, str | None]] = {}
    for keyword, args, _obj_type, obj_text in _iter_items(text):
        if keyword in fields:
            raise DescriptorError(f"duplicate {keyword} item")
        fields[keyword] = (args, obj_text)

    for required in (_DOC_KEYWORD, "version", "permanent-key", "secret-id-part",
                     "publication-time", "protocol-versions", "signature"):
        if required not in fields:
            raise DescriptorError(f"descriptor is missing {required}")

    try:
        version = int(fields["version"][0])
    except ValueError as e:
        raise DescriptorError("invalid version") from e
    if version != DESCRIPTOR_VERSION:
        raise DescriptorError(f"unsupported descriptor version {version}")

    key_pem = fields["permanent-key"][1]
    if key_pem is None:
        raise DescriptorError("permanent-key has no key object")

    try:
        published = datetime.strptime(fields["publication-time"][0], TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise DescriptorError("invalid publication-time") from e

    try:
        protocols = tuple(int(v) for v in fields["protocol-versions"][0].split(",") if v)
    except ValueError as e:
        raise DescriptorError("invalid protocol-versions") from e

    block = b""
    if "introduction-points" in fields:
        message = fields["introduction-points"][1]
        if message is None:
            raise DescriptorError("introduction-points has no message object")
        block = _decode_base64(_object_body(message))

    signature_obj = fields["signature"][1]
    if signature_obj is None:
        raise DescriptorError("signature has no signature object")
    signature = _decode_base64(_object_body(signature_obj))

    normalized = text.replace("\r\n", "\n")
    sig_at = normalized.find(_SIGNATURE_LINE)
    if sig_at < 0:
        raise DescriptorError("signature item is not on its own line")
    start = normalized.find(_DOC_KEYWORD)
    signed_body = normalized[start : sig_at + len(_SIGNATURE_LINE)].encode("ascii")

    return HiddenServiceDescriptor(
        descriptor_id=fields[_DOC_KEYWORD][0],
        version=version,
        permanent_key_pem=key_pem,
        secret_id_part=fields["secret-id-part"][0],
        publication_time=published,
        protocol_versions=protocols,
        introduction_points_block=block,
        signature=signature,
        signed_body=signed_body,
    )


def split_documents(payload: str) -> list[str]:
    """Split concatenated descriptor documents at their first keyword."""

    docs: list[list[str]] = []
    for line in payload.splitlines(keepends=True):
        if line.startswith(_DOC_KEYWORD + " "):
            docs.append([line])
        elif docs:
            docs[-1].append(line)
    return ["".join(lines) for lines in docs]


def parse_descriptors(payload: str | bytes) -> list[HiddenServiceDescriptor]:
    """Parse every well-formed descriptor in ``payload``; malformed ones are skipped."""

    if isinstance(payload, bytes):
        try:
            payload = payload.decode("ascii")
        except UnicodeDecodeError:
            logger.debug("Descriptor payload is not ASCII text")
            return []

    parsed: list[HiddenServiceDescriptor] = []
    for doc in split_documents(payload):
        try:
            parsed.append(parse_descriptor(doc))
        except (DescriptorError, UnicodeEncodeError) as e:
            logger.debug("Skipping malformed descriptor", error=str(e))
    return parsed


@dataclass
class Descriptor:
    """A descriptor for one replica of the front identity."""

    replica: int
    permanent_key: rsa.RSAPublicKey
    publication_time: datetime
    introduction_points: bytes = b""
    protocol_versions: tuple[int, ...] = DEFAULT_PROTOCOL_VERSIONS
    signature: bytes | None = None

    def onion_id(self) -> str:
        return onion_id_from_public_key(self.permanent_key)

    def time_period(self) -> int:
        offset = permanent_id(self.permanent_key)[0] * _SECONDS_PER_DAY // 256
        return (int(self.publication_time.timestamp()) + offset) // _SECONDS_PER_DAY

    def secret_id_part(self) -> bytes:
        return sha1_digest(struct.pack("!IB", self.time_period(), self.replica))

    def descriptor_id(self) -> bytes:
        return sha1_digest(permanent_id(self.permanent_key) + self.secret_id_part())

    def body(self) -> bytes:
        """The document up to and including the ``signature`` line; this is what gets signed."""

        lines = [
            f"{_DOC_KEYWORD} {b32_encode(self.descriptor_id())}",
            f"version {DESCRIPTOR_VERSION}",
            "permanent-key",
            public_key_pem(self.permanent_key),
            f"secret-id-part {b32_encode(self.secret_id_part())}",
            f"publication-time {self.publication_time.astimezone(timezone.utc).strftime(TIME_FORMAT)}",
            "protocol-versions " + ",".join(str(v) for v in self.protocol_versions),
        ]
        if self.introduction_points:
            lines += [
                "introduction-points",
                "-----BEGIN MESSAGE-----",
                _wrap_base64(self.introduction_points),
                "-----END MESSAGE-----",
            ]
        lines.append("signature")
        return ("\n".join(lines) + "\n").encode("ascii")

    @property
    def is_signed(self) -> bool:
        return self.signature is not None

    def attach_signature(self, signature: bytes) -> None:
        if self.signature is not None:
            raise DescriptorError(f"replica {self.replica} is already signed")
        if not signature:
            raise DescriptorError("empty signature")
        self.signature = signature

    def to_bytes(self) -> bytes:
        if self.signature is None:
            raise DescriptorError(f"replica {self.replica} is not signed")
        trailer = "-----BEGIN SIGNATURE-----\n" + _wrap_base64(self.signature) + "\n-----END SIGNATURE-----\n"
        return self.body() + trailer.encode("ascii")
