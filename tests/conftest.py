"""Test configuration for hsbalance package."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from hsbalance.control import ControlReply
from hsbalance.crypto import FrontKey, b32_encode
from hsbalance.descriptor import Descriptor, IntroductionPoint, parse_introduction_points
from hsbalance.errors import ControlError

FIXED_NOW = datetime(2024, 3, 1, 12, 34, 56, tzinfo=timezone.utc)


class FakeControlSession:
    """In-memory control session.

    Records every command, fails commands whose first word is listed in
    ``fail_commands``, fails the n-th ``HSPOST`` (0-based) listed in
    ``fail_posts`` and hands out events pushed with :meth:`push`.
    """

    def __init__(self) -> None:
        self.commands: list[str] = []
        self.posted: list[bytes] = []
        self.fail_commands: set[str] = set()
        self.fail_posts: set[int] = set()
        self.events: asyncio.Queue[ControlReply] = asyncio.Queue()

    async def request(self, command: str, *, data: bytes | None = None) -> ControlReply:
        self.commands.append(command)
        name = command.split(" ", 1)[0]
        if name in self.fail_commands:
            raise ControlError(f"{name} failed: 552 Unrecognized", status=552)
        if name == "HSPOST":
            attempt = len(self.posted)
            self.posted.append(data or b"")
            if attempt in self.fail_posts:
                raise ControlError("HSPOST failed: 554 Invalid descriptor", status=554)
        if name == "GETINFO":
            return ControlReply(status=250, lines=('version=0.4.8.9', "OK"), data=('version=0.4.8.9',))
        return ControlReply(status=250, lines=("OK",))

    async def next_event(self) -> ControlReply:
        return await self.events.get()

    def push(self, body: str | None, header: str = "HS_DESC_CONTENT x y z") -> None:
        data = (header,) if body is None else (header, body)
        self.events.put_nowait(ControlReply(status=650, lines=(header, "OK"), data=data))

    def push_unrelated(self) -> None:
        self.events.put_nowait(ControlReply(status=650, lines=("CIRC 1 BUILT",)))


def _intro_point_text(n: int) -> str:
    return (
        f"introduction-point {b32_encode(n.to_bytes(20, 'big'))}\n"
        f"ip-address 10.0.{n // 256}.{n % 256}\n"
        "onion-port 9001\n"
        "onion-key\n"
        "-----BEGIN RSA PUBLIC KEY-----\n"
        "MIGJAoGBAMmN\n"
        "-----END RSA PUBLIC KEY-----\n"
        "service-key\n"
        "-----BEGIN RSA PUBLIC KEY-----\n"
        "MIGJAoGBAOXl\n"
        "-----END RSA PUBLIC KEY-----\n"
    )


@pytest.fixture(scope="session")
def front_key() -> FrontKey:
    return FrontKey(rsa.generate_private_key(public_exponent=65537, key_size=1024))


@pytest.fixture(scope="session")
def backend_keys() -> list[FrontKey]:
    return [FrontKey(rsa.generate_private_key(public_exponent=65537, key_size=1024)) for _ in range(4)]


@pytest.fixture
def make_intro_points():
    """Return ``count`` distinct introduction points numbered from ``start``."""

    def factory(count: int, start: int = 0) -> list[IntroductionPoint]:
        block = "".join(_intro_point_text(n) for n in range(start, start + count))
        return parse_introduction_points(block.encode("ascii"))

    return factory


@pytest.fixture
def make_descriptor_text():
    """Render a signed descriptor document for ``key`` carrying ``points``."""

    def factory(key: FrontKey, points: list[IntroductionPoint], replica: int = 0) -> str:
        desc = Descriptor(
            replica=replica,
            permanent_key=key.public_key,
            publication_time=FIXED_NOW.replace(minute=0, second=0),
            introduction_points=b"".join(p.to_bytes() for p in points),
        )
        desc.attach_signature(key.sign(desc.body()))
        return desc.to_bytes().decode("ascii")

    return factory


@pytest.fixture
def fake_session() -> FakeControlSession:
    return FakeControlSession()
