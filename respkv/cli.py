#!/usr/bin/env python3
"""
RESP-KV Command-Line Client

Issues a single command against a RESP-KV server and prints the result,
or, with no command, starts an interactive session.

Usage:
    resp-kv ping
    resp-kv set mykey "Hello, Redis!" --ttl 60
    resp-kv get mykey
    resp-kv del mykey
    resp-kv --host 10.0.0.5 --port 6380 get mykey
    resp-kv                                  # interactive

Exit status is 0 on success, 1 when GET finds no key or SET/DEL is not
acknowledged, and 2 on connection, protocol or server errors.
"""

import argparse
import asyncio
import logging
import shlex
import sys
from typing import Callable, List

from .client.connection import Connection
from .config.settings import settings
from .exceptions import RespKVError, ServerError

logger = logging.getLogger(__name__)

HELP_TEXT = """
RESP-KV Commands:
-----------------
  PING                      Check that the server answers
  SET <key> <value> [ttl]   Store a value (optional TTL in seconds)
  GET <key>                 Print the value for a key
  DEL <key>                 Delete a key

Client Commands:
----------------
  help                      Show this help message
  status                    Show connection status
  reconnect                 Reconnect to the server
  exit, quit                Close the connection and exit

Values containing spaces can be quoted: SET greeting "hello world"
"""


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Command-line client for RESP-KV",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", type=str, default=settings.HOST, help="Server host")
    parser.add_argument("--port", type=int, default=settings.PORT, help="Server port")
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.COMMAND_TIMEOUT or 0,
        help="Per-command timeout in seconds (0 disables)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command")

    commands.add_parser("ping", help="Check that the server answers")

    set_parser = commands.add_parser("set", help="Store a value")
    set_parser.add_argument("key")
    set_parser.add_argument("value")
    set_parser.add_argument("--ttl", type=int, default=0, help="Expire after N seconds")

    get_parser = commands.add_parser("get", help="Print a stored value")
    get_parser.add_argument("key")

    del_parser = commands.add_parser("del", help="Delete a key")
    del_parser.add_argument("key")

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace) -> int:
    """Connect, run one command, print its result, and return an exit code."""
    async with Connection(args.host, args.port, command_timeout=args.timeout) as conn:
        if args.command == "ping":
            print(await conn.ping())
            return 0

        if args.command == "set":
            ok = await conn.set(args.key, args.value, ttl=args.ttl)
            print("OK" if ok else "FAILED")
            return 0 if ok else 1

        if args.command == "get":
            value = await conn.get(args.key)
            if value is None:
                print("(nil)")
                return 1
            print(value.decode("utf-8", errors="replace"))
            return 0

        if args.command == "del":
            ok = await conn.delete(args.key)
            print("OK" if ok else "FAILED")
            return 0 if ok else 1

    raise ValueError(f"unknown command: {args.command}")


async def execute_line(conn: Connection, words: List[str]) -> str:
    """
    Run one interactive command and format its result for display.

    Raises:
        ValueError: unknown command or wrong number of arguments
        RespKVError: the command failed on the wire or on the server
    """
    verb, args = words[0].upper(), words[1:]

    if verb == "PING" and not args:
        return await conn.ping()

    if verb == "SET" and len(args) in (2, 3):
        try:
            ttl = int(args[2]) if len(args) == 3 else 0
        except ValueError:
            raise ValueError(f"invalid TTL: {args[2]!r}") from None
        return "OK" if await conn.set(args[0], args[1], ttl=ttl) else "FAILED"

    if verb == "GET" and len(args) == 1:
        value = await conn.get(args[0])
        if value is None:
            return "(nil)"
        return f'"{value.decode("utf-8", errors="replace")}"'

    if verb == "DEL" and len(args) == 1:
        return "OK" if await conn.delete(args[0]) else "FAILED"

    if verb in ("PING", "SET", "GET", "DEL"):
        raise ValueError(f"wrong number of arguments for '{verb.lower()}'; type 'help'")
    raise ValueError(f"unknown command '{words[0]}'; type 'help'")


async def run_repl(args: argparse.Namespace, prompt: Callable[[str], str] = input) -> int:
    """
    Interactive session: read commands until exit, quit or end of input.

    ``prompt`` is called in a worker thread so the event loop keeps running
    while waiting for the user.
    """
    loop = asyncio.get_running_loop()
    conn = Connection(args.host, args.port, command_timeout=args.timeout)

    print(f"Connecting to {conn.address}...")
    try:
        await conn.connect()
    except RespKVError as exc:
        print(f"Failed to connect: {exc}")
        print(f"  Try: resp-kv-server --port {args.port}")
        return 2

    print("Connected! Type 'help' for commands.\n")

    try:
        while True:
            try:
                line = await loop.run_in_executor(None, prompt, f"{conn.address}> ")
            except EOFError:
                print("\nGoodbye!")
                return 0

            try:
                words = shlex.split(line)
            except ValueError as exc:
                print(f"(error) {exc}")
                continue
            if not words:
                continue

            lower_cmd = words[0].lower()

            if lower_cmd in ("exit", "quit"):
                print("Goodbye!")
                return 0

            if lower_cmd == "help":
                print(HELP_TEXT)
                continue

            if lower_cmd == "status":
                print(f"Status: {conn.state.value}")
                print(f"Server: {conn.address}")
                continue

            if lower_cmd == "reconnect":
                try:
                    await conn.reconnect()
                    print("Reconnected!")
                except RespKVError as exc:
                    print(f"Reconnection failed: {exc}")
                continue

            try:
                print(await execute_line(conn, words))
            except ServerError as exc:
                print(f"(error) {exc.message}")
            except RespKVError as exc:
                print(f"(error) {exc}")
                print("Connection lost; type 'reconnect' to try again.")
            except ValueError as exc:
                print(f"(error) {exc}")
    finally:
        await conn.close()


def main(argv=None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    if args.command is None:
        try:
            code = asyncio.run(run_repl(args))
        except KeyboardInterrupt:
            print("\n\nInterrupted. Goodbye!")
            code = 0
        sys.exit(code)

    try:
        code = asyncio.run(run_command(args))
    except RespKVError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"ERROR: {exc}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
