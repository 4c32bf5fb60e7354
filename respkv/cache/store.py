"""
Key-Value Store Module

The in-memory storage behind the companion RESP server.

Keys and values are raw bytes. Each entry may carry an absolute expiration
time; expired entries are removed lazily on access and actively by
``cleanup_expired()``, which the server calls on a timer.

With an AppendOnlyLog attached, every put and delete is also written to
disk, and ``restore()`` rebuilds the store from that log.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

from .persistence import AppendOnlyLog

logger = logging.getLogger(__name__)


class KVStore:
    """
    In-memory key-value store with TTL support.

    Internal Storage:
        Plain dict, key -> (value, expiration_timestamp)
        expiration_timestamp = 0 means no expiration

    The store is only touched from the server's event loop, so it needs
    no locking.

    Attributes:
        aof: Optional AppendOnlyLog receiving every mutation
    """

    def __init__(self, aof: AppendOnlyLog = None):
        self._store: Dict[bytes, Tuple[bytes, float]] = {}
        self.aof = aof

    def put(self, key: bytes, value: bytes, ttl: int = 0) -> None:
        """
        Insert or update a key-value pair.

        Args:
            key: The key to store
            value: The value to associate with the key
            ttl: Time-to-live in seconds (0 or less = no expiration)

        Updating a key replaces its TTL as well as its value.
        """
        expires_at = time.time() + ttl if ttl and ttl > 0 else 0
        if self.aof is not None:
            self.aof.append_set(key, value, expires_at)
        self._store[key] = (value, expires_at)

    def get(self, key: bytes) -> Optional[bytes]:
        """Return the value if present and not expired, else None."""
        entry = self._store.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if self._is_expired(expires_at, time.time()):
            # Lazy expiration
            self._store.pop(key, None)
            return None
        return value

    def delete(self, key: bytes) -> bool:
        """
        Delete a key.

        Returns:
            True if a live key was removed, False if it was missing or
            already expired
        """
        entry = self._store.pop(key, None)
        if entry is None:
            return False
        if self.aof is not None:
            self.aof.append_delete(key)
        return not self._is_expired(entry[1], time.time())

    def exists(self, key: bytes) -> bool:
        return self.get(key) is not None

    def size(self) -> int:
        """Number of stored keys, possibly including expired ones."""
        return len(self._store)

    def clear(self) -> None:
        self._store.clear()
        if self.aof is not None:
            self.aof.truncate()

    def cleanup_expired(self) -> int:
        """
        Remove all expired keys (active expiration).

        Expired keys are not logged: their SET records carry the deadline,
        so replay skips them anyway.

        Returns:
            Number of keys removed
        """
        now = time.time()
        to_delete = [k for k, (_, exp) in self._store.items() if self._is_expired(exp, now)]
        for key in to_delete:
            self._store.pop(key, None)
        return len(to_delete)

    async def restore(self) -> int:
        """
        Replay the append-only log into the store.

        Records are applied without being logged again. Keys whose deadline
        has passed are skipped.

        Returns:
            Number of live keys after replay
        """
        if self.aof is None:
            return 0

        replayed = 0
        async for command in self.aof.read_commands():
            args = command.arguments
            expires_at = self._parse_deadline(args[2]) if len(args) == 3 else None
            if command.name == "SET" and expires_at is not None:
                key, value = args[0], args[1]
                if self._is_expired(expires_at, time.time()):
                    self._store.pop(key, None)
                else:
                    self._store[key] = (value, expires_at)
            elif command.name == "DEL" and len(args) == 1:
                self._store.pop(args[0], None)
            else:
                logger.warning(f"Skipping unrecognised log record {command.args!r}")
                continue
            replayed += 1

        logger.info(f"Replayed {replayed} records from {self.aof.path}; {len(self._store)} keys loaded")
        return len(self._store)

    def close(self) -> None:
        """Close the append-only log, if any."""
        if self.aof is not None:
            self.aof.close()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary containing total_keys, expired_keys and active_keys.
        """
        now = time.time()
        total = len(self._store)
        expired = sum(1 for _, exp in self._store.values() if self._is_expired(exp, now))

        return {
            "total_keys": total,
            "expired_keys": expired,
            "active_keys": total - expired,
        }

    @staticmethod
    def _parse_deadline(raw: bytes) -> Optional[float]:
        try:
            return float(raw.decode("ascii"))
        except (UnicodeDecodeError, ValueError):
            return None

    @staticmethod
    def _is_expired(expires_at: float, now: float) -> bool:
        return bool(expires_at) and expires_at <= now
