"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import socket
import pytest
import pytest_asyncio
from contextlib import closing
from typing import AsyncGenerator, List, Optional, Tuple, Union

from respkv.cache.store import KVStore
from respkv.client.connection import Connection
from respkv.client.pool import ConnectionPool
from respkv.exceptions import ProtocolError
from respkv.network.tcp_server import RespServer
from respkv.protocol.codec import RespCodec
from respkv.protocol.commands import Command


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# ============================================================================
# Store and Codec Fixtures
# ============================================================================

@pytest.fixture
def store() -> KVStore:
    """Create a fresh KVStore instance."""
    return KVStore()


@pytest.fixture
def codec() -> RespCodec:
    """Create a RespCodec instance."""
    return RespCodec()


@pytest.fixture
def make_reader():
    """
    Factory for StreamReaders pre-loaded with bytes.

    Must be called from inside a running event loop (an async test).

    Usage:
        reader = make_reader(b"+OK\\r\\n")
    """
    def factory(data: bytes, eof: bool = True) -> asyncio.StreamReader:
        reader = asyncio.StreamReader()
        reader.feed_data(data)
        if eof:
            reader.feed_eof()
        return reader
    return factory


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def server(server_port: int) -> AsyncGenerator[RespServer, None]:
    """
    Create and start a RespServer for testing.

    This fixture:
    1. Creates a RespServer on a random free port
    2. Starts it in a background task
    3. Yields the server for testing
    4. Cleans up after the test
    """
    srv = RespServer(host='127.0.0.1', port=server_port, cleanup_interval=0.2)

    server_task = asyncio.create_task(srv.start())
    await asyncio.wait_for(srv.wait_started(), timeout=5)

    yield srv

    await srv.stop()
    server_task.cancel()
    try:
        await server_task
    except asyncio.CancelledError:
        pass


class ScriptedServer:
    """
    Test server that answers each request with the next canned reply.

    A reply of None means "never answer": the handler waits for the client
    to hang up. A ``(seconds, bytes)`` pair is sent after that delay. Once
    the script runs out, the connection is closed.

    Attributes:
        replies: Raw reply bytes still to be sent
        requests: Commands received so far
        port: Port the server listens on
    """

    def __init__(self, replies: List[Union[None, bytes, Tuple[float, bytes]]]):
        self.replies = list(replies)
        self.requests: List[Command] = []
        self.codec = RespCodec()
        self.port: Optional[int] = None
        self._server: Optional[asyncio.Server] = None
        self._writers = set()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self.handle, '127.0.0.1', 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            while self.replies:
                command = await self.codec.decode_command(reader)
                if command is None:
                    break
                self.requests.append(command)
                reply = self.replies.pop(0)
                if reply is None:
                    await reader.read()
                    break
                if isinstance(reply, tuple):
                    delay, reply = reply
                    await asyncio.sleep(delay)
                writer.write(reply)
                await writer.drain()
        except (ConnectionError, ProtocolError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()

    async def stop(self) -> None:
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        await self._server.wait_closed()


@pytest_asyncio.fixture
async def scripted_server():
    """
    Factory fixture for ScriptedServer instances.

    Usage:
        async def test_something(scripted_server):
            fake = await scripted_server([b"+PONG\\r\\n"])
            conn = await Connection.open('127.0.0.1', fake.port)
    """
    servers: List[ScriptedServer] = []

    async def factory(replies: list) -> ScriptedServer:
        fake = ScriptedServer(replies)
        await fake.start()
        servers.append(fake)
        return fake

    yield factory

    for fake in servers:
        await fake.stop()


# ============================================================================
# Client Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def connection(server: RespServer, server_port: int) -> AsyncGenerator[Connection, None]:
    """A Connection to the test server, closed after the test."""
    conn = await Connection.open('127.0.0.1', server_port)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def pool(server: RespServer, server_port: int) -> AsyncGenerator[ConnectionPool, None]:
    """A ConnectionPool of 3 connections to the test server."""
    p = await ConnectionPool.create('127.0.0.1', server_port, capacity=3)
    yield p
    await p.close()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
