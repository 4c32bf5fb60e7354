"""
RESP Codec Module

This module converts between commands/replies and RESP wire bytes.

Wire format (the subset spoken here):
    Request:  *<argc>\\r\\n then per argument $<len>\\r\\n<bytes>\\r\\n
    Replies:  +<text>\\r\\n            simple string
              -<message>\\r\\n         error
              $<len>\\r\\n<bytes>\\r\\n  bulk string ($-1\\r\\n when absent)

Decoding reads from an ``asyncio.StreamReader``. Lines are terminated by
``\\r\\n``; a bare ``\\n`` is tolerated.
"""

import asyncio
from typing import List, Optional

from ..config.settings import settings
from ..exceptions import ConnectionClosedError, ProtocolError, ServerError
from .commands import Argument, Command, Reply, ReplyType

CRLF = b"\r\n"

SIMPLE_STRING = b"+"
ERROR = b"-"
BULK_STRING = b"$"
ARRAY = b"*"


class RespCodec:
    """
    Encoder/decoder for the RESP subset used by RESP-KV.

    The codec holds no stream state of its own; each decode call consumes
    exactly one reply (or one request on the server side) from the reader
    it is given.

    Example:
        >>> RespCodec().encode_command("GET", "mykey")
        b'*2\\r\\n$3\\r\\nGET\\r\\n$5\\r\\nmykey\\r\\n'
    """

    def __init__(self, max_bulk_length: int = None):
        self.max_bulk_length = (
            max_bulk_length if max_bulk_length is not None else settings.MAX_BULK_LENGTH
        )

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def encode(self, command: Command) -> bytes:
        """
        Encode a command as a RESP array of bulk strings.

        Lengths are byte lengths of the encoded arguments, so multi-byte
        UTF-8 text is framed correctly.
        """
        parts = [b"*%d\r\n" % len(command.args)]
        for arg in command.args:
            parts.append(b"$%d\r\n" % len(arg))
            parts.append(arg)
            parts.append(CRLF)
        return b"".join(parts)

    def encode_command(self, *args: Argument) -> bytes:
        """Build and encode a command in one step."""
        return self.encode(Command.build(*args))

    def encode_reply(self, reply: Reply) -> bytes:
        """Encode a reply the way the server writes it."""
        if reply.type == ReplyType.BULK_STRING:
            if reply.value is None:
                return b"$-1\r\n"
            return b"$%d\r\n%s\r\n" % (len(reply.value), reply.value)

        text = reply.value.encode("utf-8")
        if b"\r" in text or b"\n" in text:
            raise ValueError("simple strings and errors cannot contain CR or LF")
        sigil = SIMPLE_STRING if reply.type == ReplyType.SIMPLE_STRING else ERROR
        return sigil + text + CRLF

    # ------------------------------------------------------------------
    # Decoding (client side)
    # ------------------------------------------------------------------

    async def decode_simple_string(self, reader: asyncio.StreamReader) -> Reply:
        """
        Read one simple-string reply.

        Raises:
            ServerError: the server sent a ``-`` error reply
            ProtocolError: any other leading byte, or no line at all
        """
        line = await self._read_line(reader)
        sigil, body = line[:1], line[1:]

        if sigil == SIMPLE_STRING:
            return Reply.simple(body.decode("utf-8", errors="replace").strip())
        if sigil == ERROR:
            raise ServerError(body.decode("utf-8", errors="replace"))
        raise ProtocolError(f"expected simple string reply, got {line!r}")

    async def decode_bulk_string(self, reader: asyncio.StreamReader) -> Reply:
        """
        Read one bulk-string reply.

        Returns ``Reply.bulk(None)`` for ``$-1``. The payload is read in
        full before the trailing delimiter is consumed.

        Raises:
            ServerError: the server sent a ``-`` error reply
            ProtocolError: bad sigil, bad length or truncated payload
        """
        line = await self._read_line(reader)
        sigil, body = line[:1], line[1:]

        if sigil == ERROR:
            raise ServerError(body.decode("utf-8", errors="replace"))
        if sigil != BULK_STRING:
            raise ProtocolError(f"expected bulk string reply, got {line!r}")

        length = self._parse_length(body, allow_null=True)
        if length == -1:
            return Reply.bulk(None)

        return Reply.bulk(await self._read_payload(reader, length))

    # ------------------------------------------------------------------
    # Decoding (server side)
    # ------------------------------------------------------------------

    async def decode_command(self, reader: asyncio.StreamReader) -> Optional[Command]:
        """
        Read one request array.

        Returns:
            The decoded Command, or None if the peer closed the stream
            cleanly before sending anything.

        Raises:
            ProtocolError: the request is not an array of bulk strings
        """
        line = await self._readline(reader)
        if not line:
            return None
        line = self._strip_terminator(line)

        if line[:1] != ARRAY:
            raise ProtocolError(f"expected array, got {line!r}")
        count = self._parse_length(line[1:], allow_null=False)

        args: List[bytes] = []
        for _ in range(count):
            header = await self._read_line(reader)
            if header[:1] != BULK_STRING:
                raise ProtocolError(f"expected bulk string, got {header!r}")
            length = self._parse_length(header[1:], allow_null=False)
            args.append(await self._read_payload(reader, length))

        return Command(args=tuple(args))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _readline(reader: asyncio.StreamReader) -> bytes:
        try:
            return await reader.readline()
        except ValueError as exc:
            # StreamReader raises ValueError when the line exceeds its limit
            raise ProtocolError(f"line too long: {exc}") from exc

    async def _read_line(self, reader: asyncio.StreamReader) -> bytes:
        """Read one non-empty line without its terminator."""
        line = await self._readline(reader)
        if not line:
            raise ConnectionClosedError("stream ended before a reply line was read")
        line = self._strip_terminator(line)
        if not line:
            raise ProtocolError("empty reply line")
        return line

    @staticmethod
    def _strip_terminator(line: bytes) -> bytes:
        if not line.endswith(b"\n"):
            raise ConnectionClosedError(f"truncated line: {line!r}")
        line = line[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
        return line

    def _parse_length(self, body: bytes, allow_null: bool) -> int:
        if allow_null and body == b"-1":
            return -1
        if not body.isdigit():
            raise ProtocolError(f"invalid length: {body!r}")
        length = int(body)
        if length > self.max_bulk_length:
            raise ProtocolError(f"length {length} exceeds limit {self.max_bulk_length}")
        return length

    async def _read_payload(self, reader: asyncio.StreamReader, length: int) -> bytes:
        """Read exactly ``length`` bytes followed by the delimiter line."""
        try:
            data = await reader.readexactly(length)
        except asyncio.IncompleteReadError as exc:
            raise ConnectionClosedError(
                f"bulk string truncated: expected {length} bytes, got {len(exc.partial)}"
            ) from exc

        terminator = await self._readline(reader)
        if terminator not in (CRLF, b"\n"):
            raise ProtocolError(f"missing bulk string terminator, got {terminator!r}")
        return data
