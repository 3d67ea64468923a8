"""Introduction point records.

An introduction-points block (the decoded ``introduction-points`` message of a
v2 descriptor) is a sequence of records, each starting with an
``introduction-point`` line. Records are kept byte-for-byte so that a block
rebuilt from them signs identically.
"""

from __future__ import annotations

from dataclasses import dataclass

from hsbalance.errors import DescriptorError

_KEYWORD = "introduction-point"


@dataclass(frozen=True)
class IntroductionPoint:
    """One relay that forwards INTRODUCE cells to a backend service.

    Args:
        identifier: Base32 identity digest of the relay.
        address: Relay IP address.
        port: Relay OR port.
        raw: The exact text of the record, newline-terminated.
    """

    identifier: str
    address: str
    port: int
    raw: bytes

    def to_bytes(self) -> bytes:
        return self.raw


def _parse_record(lines: list[str]) -> IntroductionPoint:
    header = lines[0].split()
    if len(header) != 2:
        raise DescriptorError("malformed introduction-point line")
    identifier = header[1]

    address: str | None = None
    port: int | None = None
    for line in lines[1:]:
        parts = line.split()
        if not parts:
            continue
        if parts[0] == "ip-address" and len(parts) == 2:
            address = parts[1]
        elif parts[0] == "onion-port" and len(parts) == 2:
            try:
                port = int(parts[1])
            except ValueError as e:
                raise DescriptorError(f"invalid onion-port for {identifier}") from e

    if address is None:
        raise DescriptorError(f"introduction point {identifier} has no ip-address")
    if port is None or not (0 < port < 65536):
        raise DescriptorError(f"introduction point {identifier} has no valid onion-port")

    raw = "".join(lines)
    if not raw.endswith("\n"):
        raw += "\n"
    return IntroductionPoint(identifier=identifier, address=address, port=port, raw=raw.encode("ascii"))


def parse_introduction_points(block: bytes) -> list[IntroductionPoint]:
    """Split a decoded introduction-points block into records.

    Raises:
        DescriptorError: If the block is not plaintext introduction point
            records (for instance when it is encrypted for client
            authorization).
    """

    try:
        text = block.decode("ascii")
    except UnicodeDecodeError as e:
        raise DescriptorError("introduction-points block is not ASCII text") from e

    records: list[list[str]] = []
    for line in text.splitlines(keepends=True):
        if line.startswith(_KEYWORD + " "):
            records.append([line])
        elif records:
            records[-1].append(line)
        elif line.strip():
            raise DescriptorError("introduction-points block does not start with a record")

    return [_parse_record(lines) for lines in records]
