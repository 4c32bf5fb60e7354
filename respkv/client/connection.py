"""
Connection Module

A single persistent TCP connection to a RESP-KV server.

Each command coroutine writes exactly one encoded command and reads exactly
one reply. The connection never retries on its own; retry and replacement
policy belongs to the caller or to the ConnectionPool.

State machine:
    DISCONNECTED --connect--> CONNECTED --I/O failure or cancel--> BROKEN
    BROKEN --reconnect--> CONNECTED
    any --close--> CLOSED (terminal)
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..config.settings import settings
from ..exceptions import (
    CommandTimeoutError,
    ConnectivityError,
    ProtocolError,
    ServerError,
)
from ..protocol.codec import RespCodec
from ..protocol.commands import Argument, Command, Reply

logger = logging.getLogger(__name__)

Decoder = Callable[[asyncio.StreamReader], Awaitable[Reply]]


def _timeout(value: Optional[float], default: Optional[float]) -> Optional[float]:
    """Resolve a timeout argument; None means the default, <= 0 disables."""
    if value is None:
        return default
    return value if value > 0 else None


class ConnectionState(Enum):
    """Lifecycle states of a Connection."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    BROKEN = "broken"
    CLOSED = "closed"


class Connection:
    """
    Asynchronous RESP client connection supporting PING, SET, GET and DEL.

    Usage:
        async with Connection('127.0.0.1', 6380) as conn:
            await conn.set('mykey', 'Hello, Redis!', ttl=60)
            value = await conn.get('mykey')   # b'Hello, Redis!'

    Attributes:
        host: Remote host
        port: Remote port
        connect_timeout: Seconds allowed for dialing (None = no limit)
        command_timeout: Seconds allowed for one command round trip
            (None = no limit)
        state: Current ConnectionState
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            connect_timeout: float = None,
            command_timeout: float = None,
            codec: RespCodec = None,
    ):
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.connect_timeout = _timeout(connect_timeout, settings.CONNECT_TIMEOUT)
        self.command_timeout = _timeout(command_timeout, settings.COMMAND_TIMEOUT)
        self.codec = codec if codec is not None else RespCodec()

        self.state = ConnectionState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        # Keeps request/reply pairs together if one connection is shared
        self._lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def __repr__(self) -> str:
        return f"<Connection {self.address} {self.state.value}>"

    @classmethod
    async def open(cls, host: str = None, port: int = None, **kwargs) -> "Connection":
        """Create a connection and dial it."""
        connection = cls(host, port, **kwargs)
        await connection.connect()
        return connection

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Dial the server.

        Raises:
            ConnectivityError: the dial failed or timed out. The state is
                left unchanged.
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.host, self.port, limit=settings.READ_BUFFER_SIZE
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ConnectivityError(f"timed out connecting to {self.address}") from exc
        except OSError as exc:
            raise ConnectivityError(f"could not connect to {self.address}: {exc}") from exc

        self.state = ConnectionState.CONNECTED
        logger.debug(f"Connected to {self.address}")

    async def reconnect(self) -> None:
        """
        Close the current stream and dial the same address again.

        A CLOSED connection stays closed; callers that still need one must
        open a new Connection.

        Raises:
            ConnectivityError: the connection was closed, or the dial failed
                (the connection is then BROKEN).
        """
        if self.state == ConnectionState.CLOSED:
            raise ConnectivityError(f"connection to {self.address} is closed")

        logger.debug(f"Reconnecting to {self.address}")
        await self._close_stream()
        self.state = ConnectionState.BROKEN
        await self.connect()

    def is_alive(self) -> bool:
        """
        Report whether the stream is open, using local state only.

        A peer close is only noticed once the event loop has processed the
        EOF; no bytes are sent or read here.
        """
        return (
            self.state == ConnectionState.CONNECTED
            and self._writer is not None
            and not self._writer.is_closing()
            and not self._reader.at_eof()
        )

    async def close(self) -> None:
        """Release the stream. Safe to call more than once."""
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        await self._close_stream()
        logger.debug(f"Closed connection to {self.address}")

    async def __aenter__(self) -> "Connection":
        if self.state != ConnectionState.CONNECTED:
            await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def ping(self) -> str:
        """Send PING and return the server's acknowledgement text."""
        reply = await self._execute(self.codec.decode_simple_string, "PING")
        return reply.value

    async def set(self, key: Argument, value: Argument, ttl: int = 0) -> bool:
        """
        Store a value, optionally expiring after ``ttl`` seconds.

        The TTL argument is left off the wire when ``ttl <= 0``.

        Returns:
            True if the server answered OK
        """
        args = ["SET", key, value]
        if ttl > 0:
            args.append(int(ttl))
        reply = await self._execute(self.codec.decode_simple_string, *args)
        return reply.value == "OK"

    async def get(self, key: Argument) -> Optional[bytes]:
        """Return the stored bytes, or None if the key does not exist."""
        reply = await self._execute(self.codec.decode_bulk_string, "GET", key)
        return reply.value

    async def delete(self, key: Argument) -> bool:
        """Send DEL; True if the server answered OK."""
        reply = await self._execute(self.codec.decode_simple_string, "DEL", key)
        return reply.value == "OK"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute(self, decode: Decoder, *args: Argument) -> Reply:
        """Send one command, read one reply, and classify any failure."""
        command = Command.build(*args)

        async with self._lock:
            if self.state != ConnectionState.CONNECTED:
                raise ConnectivityError(
                    f"connection to {self.address} is {self.state.value}"
                )

            try:
                return await asyncio.wait_for(
                    self._round_trip(command, decode),
                    timeout=self.command_timeout,
                )
            except ServerError:
                raise
            except ProtocolError as exc:
                self._mark_broken(f"protocol error: {exc}")
                raise
            except asyncio.TimeoutError as exc:
                self._mark_broken("command timed out")
                raise CommandTimeoutError(
                    f"{command.name} to {self.address} timed out after "
                    f"{self.command_timeout}s"
                ) from exc
            except (OSError, asyncio.IncompleteReadError) as exc:
                self._mark_broken(f"I/O error: {exc}")
                raise ConnectivityError(
                    f"{command.name} to {self.address} failed: {exc}"
                ) from exc
            except asyncio.CancelledError:
                # The reply may still arrive; it must not pair with a later command
                self._mark_broken("command cancelled")
                raise

    async def _round_trip(self, command: Command, decode: Decoder) -> Reply:
        self._writer.write(self.codec.encode(command))
        await self._writer.drain()
        return await decode(self._reader)

    def _mark_broken(self, reason: str) -> None:
        """Stop using the stream; its read position can no longer be trusted."""
        logger.debug(f"Connection to {self.address} broken: {reason}")
        self.state = ConnectionState.BROKEN
        if self._writer is not None:
            self._writer.close()

    async def _close_stream(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is None:
            return

        try:
            writer.close()
            await writer.wait_closed()
        except Exception as exc:
            logger.debug(f"Ignoring error while closing {self.address}: {exc}")
