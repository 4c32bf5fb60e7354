"""
Connection Pool Module

A fixed-size pool of persistent Connections shared by many concurrent tasks.

All connections are dialed up front. Callers borrow one with a timeout,
use it, and release it. Dead connections are revived on borrow by
reconnecting them or, failing that, by dialing a replacement.

Capacity invariant:
    idle + in use + lost == capacity
where "lost" counts slots whose connection could neither be reconnected nor
replaced.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Set

from ..config.settings import settings
from ..exceptions import ConnectivityError, PoolClosedError, PoolTimeoutError
from .connection import Connection

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Bounded pool of Connections to a single server.

    Usage:
        async with ConnectionPool('127.0.0.1', 6380, capacity=10) as pool:
            async with pool.connection(timeout=1.0) as conn:
                await conn.set('key', 'value')

        # or, explicitly
        pool = await ConnectionPool.create('127.0.0.1', 6380, capacity=10)
        conn = await pool.borrow(timeout=1.0)
        if conn is not None:
            try:
                await conn.get('key')
            finally:
                await pool.release(conn)
        await pool.close()

    Attributes:
        host: Server host
        port: Server port
        capacity: Fixed number of connections the pool manages
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            capacity: int = None,
            connect_timeout: float = None,
            command_timeout: float = None,
    ):
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.capacity = capacity if capacity is not None else settings.POOL_SIZE
        if self.capacity < 1:
            raise ValueError("pool capacity must be at least 1")

        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

        self._idle: asyncio.Queue = asyncio.Queue(maxsize=self.capacity)
        self._in_use: Set[Connection] = set()
        self._lost = 0
        self._opened = False
        self._closed = False

    @classmethod
    async def create(
            cls,
            host: str = None,
            port: int = None,
            capacity: int = None,
            **kwargs,
    ) -> "ConnectionPool":
        """Create a pool and dial all of its connections."""
        pool = cls(host, port, capacity, **kwargs)
        await pool.open()
        return pool

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """
        Dial ``capacity`` connections and fill the idle queue.

        If any dial fails, the connections that did open are closed and the
        failure is raised; no partially filled pool is left behind.

        Raises:
            ConnectivityError: at least one dial failed
            PoolClosedError: the pool was already closed
        """
        if self._closed:
            raise PoolClosedError("pool is closed")
        if self._opened:
            return

        results = await asyncio.gather(
            *(self._dial() for _ in range(self.capacity)),
            return_exceptions=True,
        )
        connections = [r for r in results if isinstance(r, Connection)]
        failures = [r for r in results if not isinstance(r, Connection)]

        if failures:
            logger.error(
                f"Pool construction failed: {len(failures)} of {self.capacity} "
                f"dials to {self.host}:{self.port} failed"
            )
            for connection in connections:
                await connection.close()
            raise failures[0]

        for connection in connections:
            self._idle.put_nowait(connection)
        self._opened = True
        logger.info(f"Connection pool ready: {self.capacity} connections to {self.host}:{self.port}")

    async def borrow(self, timeout: float = None) -> Optional[Connection]:
        """
        Take a live connection from the pool.

        Waits up to ``timeout`` seconds (default from settings) for an idle
        connection. A connection that is no longer alive is reconnected or
        replaced before it is handed out.

        Returns:
            A connection, or None if none became available in time or a dead
            one could not be revived. None is backpressure, not an error.

        Raises:
            PoolClosedError: the pool has been closed
        """
        if self._closed:
            raise PoolClosedError("pool is closed")

        timeout = timeout if timeout is not None else settings.BORROW_TIMEOUT
        try:
            connection = self._idle.get_nowait()
        except asyncio.QueueEmpty:
            try:
                connection = await asyncio.wait_for(self._idle.get(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.debug(f"No connection available within {timeout}s")
                return None

        self._in_use.add(connection)
        if connection.is_alive():
            return connection

        try:
            return await self._revive(connection)
        except BaseException:
            # Interrupted mid-revive (usually cancelled): the slot goes back
            # idle with its dead connection so the next borrow retries it
            self._restore_slot(connection)
            raise

    async def release(self, connection: Optional[Connection]) -> None:
        """
        Give a borrowed connection back.

        Never waits for space: every borrowed connection has a reserved slot
        in the idle queue. Once the pool is closed, released connections are
        closed instead of queued.
        """
        if connection is None:
            return
        if connection not in self._in_use:
            logger.warning(f"Ignoring release of {connection!r}: not borrowed from this pool")
            return

        self._in_use.discard(connection)
        # No await between the closed check and the put
        if not self._closed:
            self._idle.put_nowait(connection)
            return

        logger.debug(f"Pool closed; closing released {connection!r}")
        await connection.close()

    @asynccontextmanager
    async def connection(self, timeout: float = None) -> AsyncIterator[Connection]:
        """
        Borrow a connection for the duration of an ``async with`` block.

        The connection is released on every exit path, including errors
        raised by the block.

        Raises:
            PoolTimeoutError: no connection could be borrowed
        """
        connection = await self.borrow(timeout)
        if connection is None:
            raise PoolTimeoutError(f"no connection to {self.host}:{self.port} available")
        try:
            yield connection
        finally:
            await self.release(connection)

    def available_count(self) -> int:
        """Idle connections at this instant (advisory)."""
        return self._idle.qsize()

    def in_use_count(self) -> int:
        return len(self._in_use)

    def lost_count(self) -> int:
        return self._lost

    def get_stats(self) -> Dict[str, Any]:
        """
        Get pool statistics.

        Returns:
            Dictionary with capacity, idle, in_use, lost and closed.
        """
        return {
            "host": self.host,
            "port": self.port,
            "capacity": self.capacity,
            "idle": self.available_count(),
            "in_use": self.in_use_count(),
            "lost": self._lost,
            "closed": self._closed,
        }

    async def close(self) -> None:
        """
        Close the pool and every idle connection.

        Borrowed connections are not reclaimed; they are closed when their
        holder releases them.
        """
        self._closed = True

        drained = 0
        while True:
            try:
                connection = self._idle.get_nowait()
            except asyncio.QueueEmpty:
                break
            await connection.close()
            drained += 1

        logger.info(f"Connection pool closed: {drained} idle connections closed")
        if self._in_use:
            logger.warning(f"{len(self._in_use)} borrowed connections still outstanding")

    async def __aenter__(self) -> "ConnectionPool":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _dial(self) -> Connection:
        return await Connection.open(
            self.host,
            self.port,
            connect_timeout=self.connect_timeout,
            command_timeout=self.command_timeout,
        )

    def _restore_slot(self, connection: Connection) -> None:
        self._in_use.discard(connection)
        if self._closed:
            logger.debug(f"Pool closed; dropping interrupted {connection!r}")
            return
        self._idle.put_nowait(connection)

    async def _revive(self, connection: Connection) -> Optional[Connection]:
        """Reconnect a dead connection, or swap in a new one."""
        try:
            await connection.reconnect()
            logger.info(f"Reconnected dead pooled connection to {connection.address}")
            return connection
        except ConnectivityError as exc:
            logger.warning(f"Reconnect failed ({exc}); dialing a replacement")

        self._in_use.discard(connection)
        await connection.close()

        try:
            replacement = await self._dial()
        except ConnectivityError as exc:
            self._lost += 1
            logger.warning(
                f"Replacement dial failed ({exc}); pool capacity reduced to "
                f"{self.capacity - self._lost}"
            )
            return None

        self._in_use.add(replacement)
        logger.info(f"Replaced dead pooled connection to {self.host}:{self.port}")
        return replacement
