"""Control-protocol framing.

Replies are sequences of ``NNN<sep><text>`` lines where ``sep`` is ``-`` for a
mid-reply line, ``+`` for a line followed by a dot-terminated data block and a
space for the final line.
"""

from __future__ import annotations

import re

from hsbalance.errors import ControlError

from .interfaces import ControlReply

CRLF = "\r\n"

_STATUS_RE = re.compile(r"^\d{3}$")


class ReplyParser:
    """Incrementally assembles :class:`ControlReply` objects from lines."""

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._status: int | None = None
        self._lines: list[str] = []
        self._data: list[str] = []
        self._block: list[str] | None = None

    def feed_line(self, line: str) -> ControlReply | None:
        """Consume one line (without its line terminator).

        Returns:
            The completed reply, or ``None`` while a reply is still open.

        Raises:
            ControlError: If the line is not valid reply framing.
        """

        if self._block is not None:
            if line == ".":
                self._data.append("\n".join(self._block))
                self._block = None
            else:
                self._block.append(line[1:] if line.startswith("..") else line)
            return None

        if len(line) < 4 or not _STATUS_RE.match(line[:3]):
            raise ControlError(f"malformed reply line: {line!r}")
        status = int(line[:3])
        sep, text = line[3], line[4:]
        if self._status is not None and status != self._status:
            raise ControlError(f"status changed mid-reply: {self._status} -> {status}")
        self._status = status
        self._lines.append(text)

        if sep == "-":
            self._data.append(text)
        elif sep == "+":
            self._data.append(text)
            self._block = []
        elif sep == " ":
            reply = ControlReply(status=status, lines=tuple(self._lines), data=tuple(self._data))
            self._reset()
            return reply
        else:
            raise ControlError(f"malformed reply separator: {line!r}")
        return None


def encode_command(command: str, data: bytes | None = None) -> bytes:
    """Render a command, as a ``+`` multi-line command when ``data`` is given."""

    if "\r" in command or "\n" in command:
        raise ValueError("command must be a single line")
    if data is None:
        return (command + CRLF).encode("ascii")

    lines = data.decode("ascii").replace("\r\n", "\n").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    escaped = ["." + line if line.startswith(".") else line for line in lines]
    return ("+" + command + CRLF + CRLF.join(escaped) + CRLF + "." + CRLF).encode("ascii")


def quote_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(value: str) -> str:
    out: list[str] = []
    it = iter(value)
    for ch in it:
        if ch == "\\":
            out.append(next(it, ""))
        else:
            out.append(ch)
    return "".join(out)


_AUTH_METHODS_RE = re.compile(r"METHODS=(\S+)")
_COOKIEFILE_RE = re.compile(r'COOKIEFILE="((?:[^"\\]|\\.)*)"')


def parse_protocolinfo(reply: ControlReply) -> tuple[set[str], str | None]:
    """Extract ``(auth methods, cookie file)`` from a ``PROTOCOLINFO`` reply."""

    for line in reply.lines:
        if not line.startswith("AUTH "):
            continue
        methods_m = _AUTH_METHODS_RE.search(line)
        methods = set(methods_m.group(1).split(",")) if methods_m else set()
        cookie_m = _COOKIEFILE_RE.search(line)
        return methods, _unquote(cookie_m.group(1)) if cookie_m else None
    raise ControlError("PROTOCOLINFO reply has no AUTH line")
