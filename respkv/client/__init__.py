"""Client module for RESP-KV."""

from .connection import Connection, ConnectionState
from .pool import ConnectionPool

__all__ = ["Connection", "ConnectionPool", "ConnectionState"]
