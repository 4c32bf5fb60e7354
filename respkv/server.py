#!/usr/bin/env python3
"""
RESP-KV Server Entry Point

Starts the companion RESP server.

Usage:
    python -m respkv.server                       # Default settings (127.0.0.1:6380)
    python -m respkv.server --port 7000           # Custom port
    python -m respkv.server --host 0.0.0.0        # Listen on all interfaces
    python -m respkv.server --cleanup-interval 1  # Expire keys more eagerly
    python -m respkv.server --aof ./respkv.aof    # Persist writes, replay on start
    python -m respkv.server --debug               # Enable debug logging

Environment Variables:
    RESPKV_HOST              - Server bind address
    RESPKV_PORT              - Server port
    RESPKV_CLEANUP_INTERVAL  - Seconds between expired-key sweeps
    RESPKV_AOF_PATH          - Append-only log file (unset = no persistence)
    RESPKV_DEBUG             - Enable debug mode (true/false)
"""

import argparse
import asyncio
import logging
import signal
import sys

from .cache.persistence import AppendOnlyLog
from .cache.store import KVStore
from .config.settings import settings
from .network.tcp_server import RespServer


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="RESP-KV: in-memory key-value server speaking RESP",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=settings.HOST,
        help="Host address to bind to",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help="Port number to listen on",
    )

    parser.add_argument(
        "--cleanup-interval",
        type=float,
        default=settings.CLEANUP_INTERVAL,
        help="Seconds between active expired-key sweeps (0 disables)",
    )

    parser.add_argument(
        "--aof",
        type=str,
        default=settings.AOF_PATH,
        help="Append-only log file to replay on startup and write to (empty disables)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


def build_store(aof_path: str) -> KVStore:
    """Create the server's store, persisted to ``aof_path`` when it is set."""
    return KVStore(aof=AppendOnlyLog(aof_path) if aof_path else None)


def main(argv=None) -> None:
    """Main entry point for the server."""
    args = parse_args(argv)

    setup_logging(debug=args.debug)
    logger = logging.getLogger(__name__)

    server = RespServer(
        host=args.host,
        port=args.port,
        store=build_store(args.aof),
        cleanup_interval=args.cleanup_interval,
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    async def shutdown(sig: signal.Signals) -> None:
        """Handle shutdown signal."""
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        await server.stop()

    # Register signal handlers (Unix only)
    if sys.platform != 'win32':
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(shutdown(s))
            )

    logger.info("Starting RESP-KV server")
    logger.info(f"  Host: {args.host}")
    logger.info(f"  Port: {args.port}")
    logger.info(f"  Cleanup interval: {args.cleanup_interval}s")
    logger.info(f"  Append-only log: {args.aof or 'disabled'}")
    logger.info(f"  Debug: {args.debug}")

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
        loop.run_until_complete(server.stop())
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise
    finally:
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
