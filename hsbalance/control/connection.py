"""asyncio client for the Tor control port."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

import structlog

from hsbalance.errors import ControlError

from .interfaces import ControlReply
from .protocol import ReplyParser, encode_command, parse_protocolinfo, quote_string

logger = structlog.get_logger(__name__)

DEFAULT_CONTROL_HOST = "127.0.0.1"
DEFAULT_CONTROL_PORT = 9051
COOKIE_LEN = 32


@dataclass(frozen=True)
class ControlAddress:
    """Where the control port listens: a TCP endpoint or a unix socket path."""

    host: str | None = None
    port: int | None = None
    path: str | None = None

    @classmethod
    def parse(cls, address: str) -> ControlAddress:
        """Parse ``default://``, ``tcp://host:port``, ``unix:///path`` or ``host:port``."""

        if "://" not in address:
            address = "tcp://" + address
        parts = urlsplit(address)
        if parts.scheme == "default":
            return cls(host=DEFAULT_CONTROL_HOST, port=DEFAULT_CONTROL_PORT)
        if parts.scheme == "unix":
            path = parts.path or parts.netloc
            if not path:
                raise ControlError(f"missing socket path in {address!r}")
            return cls(path=path)
        if parts.scheme == "tcp":
            try:
                port = parts.port or DEFAULT_CONTROL_PORT
            except ValueError as e:
                raise ControlError(f"invalid control port in {address!r}") from e
            return cls(host=parts.hostname or DEFAULT_CONTROL_HOST, port=port)
        raise ControlError(f"unsupported control address scheme: {parts.scheme!r}")

    def __str__(self) -> str:
        if self.path is not None:
            return f"unix://{self.path}"
        return f"tcp://{self.host}:{self.port}"


class ControlConnection:
    """
    Control-port session with a background reader.

    The reader task splits incoming replies into command replies and
    asynchronous (``6xx``) events, each delivered through its own queue.
    Commands are serialized so every reply pairs with the command that
    produced it.

    Example:
        >>> conn = await ControlConnection.open("default://")
        >>> await conn.authenticate(password)
        >>> reply = await conn.request("GETINFO version")
        >>> await conn.close()
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._replies: asyncio.Queue[ControlReply | None] = asyncio.Queue()
        self._events: asyncio.Queue[ControlReply | None] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._reader_task: asyncio.Task[None] | None = None
        self._error: ControlError | None = None

    @classmethod
    async def open(cls, address: str = "default://", *, timeout: float = 30.0) -> ControlConnection:
        """
        Connect to a control port and start the reader.

        Raises:
            ControlError: If the connection cannot be established.
        """
        target = ControlAddress.parse(address)
        try:
            if target.path is not None:
                coro = asyncio.open_unix_connection(target.path)
            else:
                coro = asyncio.open_connection(target.host, target.port)
            reader, writer = await asyncio.wait_for(coro, timeout=timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise ControlError(f"failed to connect to control socket {target}: {e}") from e

        logger.debug("Connected to control port", address=str(target))
        conn = cls(reader, writer)
        conn.start()
        return conn

    def start(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        parser = ReplyParser()
        try:
            while True:
                raw = await self._reader.readline()
                if not raw:
                    raise ControlError("control connection closed")
                line = raw.decode("latin-1").rstrip("\r\n")
                reply = parser.feed_line(line)
                if reply is None:
                    continue
                if reply.is_event:
                    self._events.put_nowait(reply)
                else:
                    self._replies.put_nowait(reply)
        except asyncio.CancelledError:
            self._error = self._error or ControlError("control connection closed")
            raise
        except ControlError as e:
            self._error = e
        except OSError as e:
            self._error = ControlError(f"control connection failed: {e}")
        finally:
            self._replies.put_nowait(None)
            self._events.put_nowait(None)

    async def request(self, command: str, *, data: bytes | None = None) -> ControlReply:
        """
        Send a command and wait for its reply.

        Args:
            command: Command line without terminator, e.g. ``"HSFETCH abc"``.
            data: Optional body; sends ``command`` as a ``+`` multi-line command.

        Raises:
            ControlError: On transport failure or a non-2xx reply.
        """
        async with self._lock:
            if self._error is not None:
                raise self._error
            logger.debug("Sending control command", command=command.split(" ", 1)[0])
            try:
                self._writer.write(encode_command(command, data))
                await self._writer.drain()
            except OSError as e:
                raise ControlError(f"failed to send {command.split(' ', 1)[0]}: {e}") from e

            reply = await self._replies.get()
            if reply is None:
                self._replies.put_nowait(None)
                raise self._error or ControlError("control connection closed")

        logger.debug("Control reply", status=reply.status, message=reply.message)
        if not reply.is_ok:
            raise ControlError(f"{command.split(' ', 1)[0]} failed: {reply.status} {reply.message}", status=reply.status)
        return reply

    async def next_event(self) -> ControlReply:
        """Wait for the next asynchronous event, in arrival order."""
        event = await self._events.get()
        if event is None:
            self._events.put_nowait(None)
            raise self._error or ControlError("control connection closed")
        return event

    async def authenticate(self, password: str | None = None) -> None:
        """
        Authenticate with the first method the server offers that we support.

        Raises:
            ControlError: If no supported method is available or Tor rejects
                the credentials.
        """
        methods, cookie_file = parse_protocolinfo(await self.request("PROTOCOLINFO 1"))
        logger.debug("Control port auth methods", methods=sorted(methods))

        if password is not None and "HASHEDPASSWORD" in methods:
            command = "AUTHENTICATE " + quote_string(password)
        elif "NULL" in methods:
            command = "AUTHENTICATE"
        elif "COOKIE" in methods and cookie_file:
            try:
                cookie = Path(cookie_file).read_bytes()
            except OSError as e:
                raise ControlError(f"unable to read auth cookie {cookie_file}: {e}") from e
            if len(cookie) != COOKIE_LEN:
                raise ControlError(f"auth cookie {cookie_file} has wrong length {len(cookie)}")
            command = "AUTHENTICATE " + cookie.hex()
        else:
            raise ControlError(f"no supported authentication method in {sorted(methods)}")

        try:
            await self.request(command)
        except ControlError as e:
            raise ControlError(f"authentication failed: {e}", status=e.status) from e

    async def close(self) -> None:
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass

    async def __aenter__(self) -> ControlConnection:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
