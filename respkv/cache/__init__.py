"""Cache module for RESP-KV."""

from .persistence import AppendOnlyLog
from .store import KVStore

__all__ = ["AppendOnlyLog", "KVStore"]
