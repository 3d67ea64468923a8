"""Control session interface and the reply type it exchanges."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class ControlReply:
    """One complete control-protocol reply or asynchronous event.

    Args:
        status: Three-digit status code (``6xx`` for asynchronous events).
        lines: Text of every reply line, status and separator stripped.
        data: Text of every mid-reply line, each ``+`` line followed by its
            unescaped data block. For an ``HS_DESC_CONTENT`` event, ``data[1]``
            is the descriptor document.
    """

    status: int
    lines: tuple[str, ...] = ()
    data: tuple[str, ...] = field(default=(), repr=False)

    @property
    def is_ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_event(self) -> bool:
        return 600 <= self.status < 700

    @property
    def message(self) -> str:
        return self.lines[-1] if self.lines else ""

    @property
    def event_name(self) -> str | None:
        if not self.is_event or not self.lines:
            return None
        return self.lines[0].split(" ", 1)[0]

    def data_at(self, index: int) -> str | None:
        if 0 <= index < len(self.data):
            return self.data[index]
        return None


class ControlSession(Protocol):
    """Request/response plus asynchronous event delivery over a control port.

    :class:`~hsbalance.control.connection.ControlConnection` talks to a real
    Tor process; tests substitute an in-memory fake.
    """

    async def request(self, command: str, *, data: bytes | None = None) -> ControlReply: ...

    async def next_event(self) -> ControlReply: ...
