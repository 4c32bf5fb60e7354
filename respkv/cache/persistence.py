"""
Append-Only Log Module

Durability for the companion server's KVStore.

Every mutation is appended to a file as a RESP command, so the file can be
read back with the same codec the server uses on the wire:

    SET <key> <value> <expires_at>    expires_at is a Unix timestamp, 0 = never
    DEL <key>

Expiry is stored as an absolute time, so a key replayed after a restart
keeps its original deadline instead of getting a fresh TTL.

Usage:
    log = AppendOnlyLog("./respkv.aof")
    store = KVStore(aof=log)
    await store.restore()   # replay, then new writes are appended
"""

import asyncio
import logging
import os
from typing import AsyncIterator, BinaryIO, Optional

from ..exceptions import ProtocolError
from ..protocol.codec import RespCodec
from ..protocol.commands import Argument, Command

logger = logging.getLogger(__name__)


class AppendOnlyLog:
    """
    File of RESP-encoded SET/DEL records.

    The file is opened for appending on the first write. Each record is
    flushed to the OS as soon as it is written; there is no fsync.

    Attributes:
        path: Location of the log file
    """

    def __init__(self, path: str, codec: RespCodec = None):
        self.path = path
        self.codec = codec if codec is not None else RespCodec()
        self._file: Optional[BinaryIO] = None

    def append_set(self, key: bytes, value: bytes, expires_at: float) -> None:
        self._append("SET", key, value, repr(float(expires_at)))

    def append_delete(self, key: bytes) -> None:
        self._append("DEL", key)

    async def read_commands(self) -> AsyncIterator[Command]:
        """
        Yield the logged commands in the order they were written.

        A torn final record (the process died mid-write) ends the replay
        with a warning; everything before it is still yielded.
        """
        if not os.path.exists(self.path):
            return

        with open(self.path, "rb") as f:
            data = f.read()

        reader = asyncio.StreamReader()
        reader.feed_data(data)
        reader.feed_eof()

        while True:
            try:
                command = await self.codec.decode_command(reader)
            except ProtocolError as exc:
                logger.warning(f"Stopping replay of {self.path} at a damaged record: {exc}")
                return
            if command is None:
                return
            yield command

    def truncate(self) -> None:
        """Discard every record."""
        self.close()
        with open(self.path, "wb"):
            pass

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _append(self, *args: Argument) -> None:
        if self._file is None:
            self._file = open(self.path, "ab")
        self._file.write(self.codec.encode_command(*args))
        self._file.flush()
