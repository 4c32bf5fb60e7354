"""
Tests for the ConnectionPool class

These tests verify:
- Construction dials every connection, or none survive
- Borrow/release accounting and the capacity invariant
- Backpressure: borrow returns None on timeout
- Dead connections are reconnected or replaced on borrow
- Shutdown closes idle connections and anything released afterwards

Run with: python -m pytest tests/test_pool.py -v
"""

import asyncio
import pytest
from respkv.client.connection import Connection, ConnectionState
from respkv.client.pool import ConnectionPool
from respkv.network.tcp_server import RespServer
from respkv.exceptions import (
    ConnectivityError,
    PoolClosedError,
    PoolTimeoutError,
    ProtocolError,
)
from tests.conftest import find_free_port


def assert_invariant(pool: ConnectionPool) -> None:
    """idle + in use + lost always adds up to the capacity."""
    assert pool.available_count() + pool.in_use_count() + pool.lost_count() == pool.capacity
    assert 0 <= pool.available_count() <= pool.capacity


@pytest.mark.asyncio
class TestPoolConstruction:
    """Test creating pools."""

    async def test_create_fills_pool(self, pool: ConnectionPool):
        assert pool.capacity == 3
        assert pool.available_count() == 3
        assert pool.in_use_count() == 0
        assert_invariant(pool)

    async def test_create_fails_without_server(self):
        """Test construction fails as a whole when dials fail."""
        with pytest.raises(ConnectivityError):
            await ConnectionPool.create('127.0.0.1', find_free_port(), capacity=2)

    async def test_partial_failure_closes_opened_connections(self, server, server_port, monkeypatch):
        """Test connections that did open are closed when one dial fails."""
        opened = []
        real_open = Connection.open
        calls = 0

        async def flaky_open(cls, host=None, port=None, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise ConnectivityError("dial failed")
            conn = await real_open(host, port, **kwargs)
            opened.append(conn)
            return conn

        monkeypatch.setattr(Connection, "open", classmethod(flaky_open))

        with pytest.raises(ConnectivityError):
            await ConnectionPool.create('127.0.0.1', server_port, capacity=3)

        assert len(opened) == 2
        assert all(conn.state == ConnectionState.CLOSED for conn in opened)

    async def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            ConnectionPool('127.0.0.1', 1, capacity=0)

    async def test_context_manager(self, server, server_port):
        async with ConnectionPool('127.0.0.1', server_port, capacity=2) as pool:
            assert pool.available_count() == 2
        assert pool.closed is True
        assert pool.available_count() == 0


@pytest.mark.asyncio
class TestPoolBorrowRelease:
    """Test lending connections."""

    async def test_borrow_and_release(self, pool: ConnectionPool):
        conn = await pool.borrow(timeout=1)
        assert conn is not None
        assert pool.available_count() == 2
        assert pool.in_use_count() == 1
        assert await conn.ping() == "PONG"

        await pool.release(conn)
        assert pool.available_count() == 3
        assert pool.in_use_count() == 0
        assert_invariant(pool)

    async def test_borrow_timeout_returns_none(self, pool: ConnectionPool):
        """Test an exhausted pool signals backpressure with None."""
        held = [await pool.borrow(timeout=1) for _ in range(3)]
        assert all(conn is not None for conn in held)
        assert pool.available_count() == 0

        assert await pool.borrow(timeout=0.1) is None
        assert await pool.borrow(timeout=0) is None
        assert_invariant(pool)

        for conn in held:
            await pool.release(conn)

    async def test_zero_timeout_with_idle_connection(self, pool: ConnectionPool):
        conn = await pool.borrow(timeout=0)
        assert conn is not None
        await pool.release(conn)

    async def test_waiter_gets_released_connection(self, pool: ConnectionPool):
        """Test a blocked borrow is served as soon as a connection comes back."""
        held = [await pool.borrow(timeout=1) for _ in range(3)]

        waiter = asyncio.create_task(pool.borrow(timeout=2))
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await pool.release(held[0])
        conn = await waiter
        assert conn is held[0]

        await pool.release(conn)
        for other in held[1:]:
            await pool.release(other)
        assert pool.available_count() == 3

    async def test_release_none_is_ignored(self, pool: ConnectionPool):
        await pool.release(None)
        assert pool.available_count() == 3

    async def test_double_release_ignored(self, pool: ConnectionPool):
        """Test releasing twice cannot push the idle count over capacity."""
        conn = await pool.borrow(timeout=1)
        await pool.release(conn)
        await pool.release(conn)
        assert pool.available_count() == 3
        assert_invariant(pool)

    async def test_foreign_connection_ignored(self, pool: ConnectionPool, server_port):
        stranger = await Connection.open('127.0.0.1', server_port)
        await pool.release(stranger)
        assert pool.available_count() == 3
        await stranger.close()

    async def test_scoped_connection(self, pool: ConnectionPool):
        async with pool.connection(timeout=1) as conn:
            assert pool.in_use_count() == 1
            assert await conn.ping() == "PONG"
        assert pool.available_count() == 3

    async def test_scoped_connection_released_on_error(self, pool: ConnectionPool):
        with pytest.raises(RuntimeError):
            async with pool.connection(timeout=1):
                raise RuntimeError("boom")
        assert pool.available_count() == 3
        assert pool.in_use_count() == 0

    async def test_scoped_connection_timeout(self, pool: ConnectionPool):
        held = [await pool.borrow(timeout=1) for _ in range(3)]
        with pytest.raises(PoolTimeoutError):
            async with pool.connection(timeout=0.05):
                pass
        for conn in held:
            await pool.release(conn)

    async def test_stats(self, pool: ConnectionPool):
        conn = await pool.borrow(timeout=1)
        stats = pool.get_stats()
        assert stats["capacity"] == 3
        assert stats["idle"] == 2
        assert stats["in_use"] == 1
        assert stats["lost"] == 0
        assert stats["closed"] is False
        await pool.release(conn)


@pytest.mark.asyncio
class TestPoolConcurrency:
    """Test many tasks sharing one pool."""

    async def test_never_more_than_capacity_borrowed(self, pool: ConnectionPool):
        in_flight = 0
        peak = 0

        async def worker(i: int) -> bytes:
            nonlocal in_flight, peak
            async with pool.connection(timeout=5) as conn:
                in_flight += 1
                peak = max(peak, in_flight)
                assert_invariant(pool)
                await conn.set(f"key-{i}", f"value-{i}", ttl=60)
                value = await conn.get(f"key-{i}")
                in_flight -= 1
            return value

        values = await asyncio.gather(*(worker(i) for i in range(50)))

        assert values == [f"value-{i}".encode() for i in range(50)]
        assert peak <= pool.capacity
        assert pool.available_count() == pool.capacity
        assert_invariant(pool)

    async def test_distinct_connections_lent(self, pool: ConnectionPool):
        held = [await pool.borrow(timeout=1) for _ in range(3)]
        assert len({id(conn) for conn in held}) == 3
        for conn in held:
            await pool.release(conn)


@pytest.mark.asyncio
class TestPoolLiveness:
    """Test dead-connection detection and replacement."""

    async def test_dead_connections_reconnected(self, server, pool: ConnectionPool):
        """Test connections killed by the server are revived on borrow."""
        await server.close_clients()
        await asyncio.sleep(0.1)

        for _ in range(3):
            conn = await pool.borrow(timeout=1)
            assert conn is not None
            assert conn.is_alive()
            assert await conn.ping() == "PONG"
            await pool.release(conn)

        assert pool.lost_count() == 0
        assert_invariant(pool)

    async def test_connection_closed_out_of_band(self, pool: ConnectionPool):
        """Test a connection closed by its borrower is replaced, not reopened."""
        conn = await pool.borrow(timeout=1)
        await conn.close()
        await pool.release(conn)

        borrowed = [await pool.borrow(timeout=1) for _ in range(3)]
        assert conn not in borrowed
        assert conn.state == ConnectionState.CLOSED
        for revived in borrowed:
            assert await revived.ping() == "PONG"
            await pool.release(revived)
        assert pool.lost_count() == 0
        assert_invariant(pool)

    async def test_cancelled_command_not_reused_by_next_borrower(self, scripted_server):
        """Test the next borrower never reads a reply meant for a cancelled command."""
        fake = await scripted_server([
            (0.3, b"$6\r\nval-k1\r\n"),
            b"$6\r\nval-k2\r\n",
        ])
        async with ConnectionPool('127.0.0.1', fake.port, capacity=1) as pool:
            async with pool.connection(timeout=1) as conn:
                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(conn.get("k1"), timeout=0.1)

            async with pool.connection(timeout=1) as conn:
                assert await conn.get("k2") == b"val-k2"
            assert_invariant(pool)

    async def test_borrow_cancelled_during_revive_keeps_slot(self, server, server_port, monkeypatch):
        """Test cancelling a borrow mid-reconnect does not lose the slot."""
        pool = await ConnectionPool.create('127.0.0.1', server_port, capacity=1)
        conn = await pool.borrow(timeout=1)
        await conn.close()
        await pool.release(conn)

        async def hanging_reconnect():
            await asyncio.sleep(3600)

        monkeypatch.setattr(conn, "reconnect", hanging_reconnect)
        task = asyncio.create_task(pool.borrow(timeout=1))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert pool.available_count() == 1
        assert pool.in_use_count() == 0
        assert pool.lost_count() == 0
        assert_invariant(pool)

        monkeypatch.undo()
        async with pool.connection(timeout=1) as revived:
            assert await revived.ping() == "PONG"
        await pool.close()

    async def test_broken_by_protocol_error_is_revived(self, pool: ConnectionPool, monkeypatch):
        """Test a connection discarded after a bad reply is usable again."""
        conn = await pool.borrow(timeout=1)

        async def bad_decode(reader):
            raise ProtocolError("garbage")

        monkeypatch.setattr(conn.codec, "decode_simple_string", bad_decode)
        with pytest.raises(ProtocolError):
            await conn.ping()
        monkeypatch.undo()
        assert conn.is_alive() is False
        await pool.release(conn)

        borrowed = [await pool.borrow(timeout=1) for _ in range(3)]
        assert conn in borrowed
        for revived in borrowed:
            assert revived.is_alive()
            assert await revived.ping() == "PONG"
            await pool.release(revived)

    async def test_replacement_when_reconnect_fails(self, pool: ConnectionPool, monkeypatch):
        conn = await pool.borrow(timeout=1)
        await conn.close()

        async def failing_reconnect():
            raise ConnectivityError("reconnect failed")

        monkeypatch.setattr(conn, "reconnect", failing_reconnect)
        await pool.release(conn)

        borrowed = [await pool.borrow(timeout=1) for _ in range(3)]
        assert conn not in borrowed
        assert all(c.is_alive() for c in borrowed)
        assert pool.lost_count() == 0
        assert_invariant(pool)

        for c in borrowed:
            await pool.release(c)

    async def test_slot_lost_when_server_gone(self, server_port):
        """Test a dead connection that cannot be revived costs one slot."""
        srv = RespServer(host='127.0.0.1', port=server_port, cleanup_interval=0)
        task = asyncio.create_task(srv.start())
        await srv.wait_started()

        pool = await ConnectionPool.create('127.0.0.1', server_port, capacity=2)
        await srv.stop()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await asyncio.sleep(0.1)

        assert await pool.borrow(timeout=1) is None
        assert pool.lost_count() == 1
        assert pool.available_count() == 1
        assert_invariant(pool)
        await pool.close()


@pytest.mark.asyncio
class TestPoolClose:
    """Test shutdown."""

    async def test_close_closes_idle(self, server, server_port):
        pool = await ConnectionPool.create('127.0.0.1', server_port, capacity=2)
        idle = [await pool.borrow(timeout=1) for _ in range(2)]
        for conn in idle:
            await pool.release(conn)

        await pool.close()
        assert pool.available_count() == 0
        assert all(conn.state == ConnectionState.CLOSED for conn in idle)

    async def test_borrow_after_close(self, pool: ConnectionPool):
        await pool.close()
        with pytest.raises(PoolClosedError):
            await pool.borrow(timeout=1)

    async def test_release_after_close_closes_connection(self, pool: ConnectionPool):
        """Test a connection returned after shutdown is closed, not leaked."""
        conn = await pool.borrow(timeout=1)
        await pool.close()

        await pool.release(conn)
        assert conn.state == ConnectionState.CLOSED
        assert pool.available_count() == 0

    async def test_close_is_idempotent(self, pool: ConnectionPool):
        await pool.close()
        await pool.close()
        assert pool.closed is True
