"""
Async RESP Server Module

This module implements the companion asyncio TCP server for RESP-KV.

Supported commands:
    PING                      -> +PONG
    SET <key> <value> [ttl]   -> +OK
    GET <key>                 -> $<len> <value> | $-1
    DEL <key>                 -> +OK
Anything else is answered with a ``-ERR`` reply.
"""

import asyncio
import logging
from asyncio import StreamReader, StreamWriter
from typing import Optional, Set

from ..cache.store import KVStore
from ..config.settings import settings
from ..exceptions import ProtocolError
from ..protocol.codec import RespCodec
from ..protocol.commands import Command, Reply

logger = logging.getLogger(__name__)


class RespServer:
    """
    Asynchronous TCP server speaking the RESP subset used by RESP-KV.

    Each client connection is handled in its own coroutine and may send any
    number of commands. All connections share one KVStore. A background
    task removes expired keys every ``cleanup_interval`` seconds.

    Usage:
        server = RespServer(host='127.0.0.1', port=6380)
        await server.start()  # Runs until stopped

    Attributes:
        host: Bind address
        port: Port number
        store: The KVStore shared by all connections
        codec: The RespCodec used for requests and replies
    """

    def __init__(
            self,
            host: str = None,
            port: int = None,
            store: KVStore = None,
            cleanup_interval: float = None,
    ):
        self.host = host if host is not None else settings.HOST
        self.port = port if port is not None else settings.PORT
        self.store = store if store is not None else KVStore()
        self.cleanup_interval = (
            cleanup_interval if cleanup_interval is not None else settings.CLEANUP_INTERVAL
        )
        self.codec = RespCodec()

        # Server state
        self._server: Optional[asyncio.Server] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._clients: Set[StreamWriter] = set()
        self._running = False
        self._started = asyncio.Event()
        self._connection_count = 0
        self._total_requests = 0

    async def handle_client(self, reader: StreamReader, writer: StreamWriter) -> None:
        """
        Serve one client until it disconnects or sends a malformed request.

        A request that cannot be framed gets a ``-ERR Protocol error`` reply
        and the connection is closed, since the stream position is lost.
        """
        addr = writer.get_extra_info('peername')
        self._connection_count += 1
        self._clients.add(writer)
        logger.debug(f"Client connected: {addr}")

        try:
            while True:
                try:
                    command = await self.codec.decode_command(reader)
                except ProtocolError as exc:
                    logger.debug(f"Protocol error from {addr}: {exc}")
                    writer.write(self.codec.encode_reply(Reply.error(f"ERR Protocol error: {exc}")))
                    await writer.drain()
                    break

                if command is None:
                    logger.debug(f"Client disconnected: {addr}")
                    break

                self._total_requests += 1
                reply = self._execute_command(command)
                writer.write(self.codec.encode_reply(reply))
                await writer.drain()

        except (ConnectionResetError, BrokenPipeError, asyncio.IncompleteReadError):
            logger.debug(f"Connection reset by client: {addr}")
        except Exception as exc:  # Log unexpected errors but keep server alive
            logger.exception(f"Error handling client {addr}: {exc}")
        finally:
            self._clients.discard(writer)
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass

    def _execute_command(self, command: Command) -> Reply:
        """Route a decoded command to the store and build the reply."""
        if not command.args:
            return Reply.error("ERR empty command")

        name = command.name
        args = command.arguments

        if name == "PING":
            return Reply.pong()

        if name == "SET":
            if len(args) not in (2, 3):
                return Reply.error("ERR wrong number of arguments for 'set' command")
            ttl = 0
            if len(args) == 3:
                try:
                    ttl = int(args[2])
                except ValueError:
                    return Reply.error("ERR invalid TTL value")
            self.store.put(args[0], args[1], ttl=ttl)
            return Reply.ok()

        if name == "GET":
            if len(args) != 1:
                return Reply.error("ERR wrong number of arguments for 'get' command")
            return Reply.bulk(self.store.get(args[0]))

        if name == "DEL":
            if len(args) != 1:
                return Reply.error("ERR wrong number of arguments for 'del' command")
            self.store.delete(args[0])
            return Reply.ok()

        # Error replies are single-line
        printable = name.replace("\r", "\\r").replace("\n", "\\n")
        return Reply.error(f"ERR unknown command '{printable}'")

    async def _cleanup_loop(self) -> None:
        """Periodically remove expired keys."""
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.store.cleanup_expired()
            if removed:
                logger.debug(f"Removed {removed} expired keys")

    async def start(self) -> None:
        """
        Start the server and serve until stopped or cancelled.

        Example:
            server = RespServer(port=6380)
            asyncio.run(server.start())
        """
        if self._running:
            return

        if self.store.aof is not None:
            await self.store.restore()

        self._server = await asyncio.start_server(
            self.handle_client,
            self.host,
            self.port,
            limit=settings.READ_BUFFER_SIZE,
        )
        self._running = True
        if self.cleanup_interval and self.cleanup_interval > 0:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

        addrs = ', '.join(str(sock.getsockname()) for sock in self._server.sockets or [])
        logger.info(f"Serving on {addrs}")
        self._started.set()

        try:
            async with self._server:
                await self._server.serve_forever()
        except asyncio.CancelledError:
            # Expected during shutdown/fixture cleanup
            logger.debug("Server start cancelled")
        finally:
            self._running = False

    async def wait_started(self) -> None:
        """Wait until the listening socket is bound."""
        await self._started.wait()

    async def close_clients(self) -> int:
        """
        Drop every open client connection without stopping the server.

        Returns:
            Number of connections closed
        """
        clients = list(self._clients)
        for writer in clients:
            writer.close()
        for writer in clients:
            try:
                await writer.wait_closed()
            except Exception:
                pass
        return len(clients)

    async def stop(self) -> None:
        """Stop accepting clients, drop open ones, cancel the cleanup task and close the log."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        if self._server is None:
            return

        self._server.close()
        await self.close_clients()
        try:
            await self._server.wait_closed()
        finally:
            self._server = None
            self._running = False
            self.store.close()

    def is_running(self) -> bool:
        """Check if the server is currently running."""
        return self._running

    def get_stats(self) -> dict:
        """
        Get server statistics.

        Returns:
            Dictionary with connection counts, request counts and store stats.
        """
        return {
            "running": self._running,
            "host": self.host,
            "port": self.port,
            "total_connections": self._connection_count,
            "active_connections": len(self._clients),
            "total_requests": self._total_requests,
            "store_stats": self.store.get_stats(),
        }


async def run_server(host: str = None, port: int = None) -> None:
    """
    Convenience function to create and run the server.

    Usage:
        asyncio.run(run_server(port=6380))
    """
    server = RespServer(host=host, port=port)

    try:
        await server.start()
    except asyncio.CancelledError:
        logger.info("Server shutdown requested")
    finally:
        await server.stop()
