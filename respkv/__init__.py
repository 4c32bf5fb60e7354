"""
RESP-KV: RESP Key-Value Client

An asyncio client for key-value servers speaking a subset of the Redis
Serialization Protocol (PING, SET with optional TTL, GET, DEL), a bounded
pool of persistent connections, and a small companion server.
"""

from .client import Connection, ConnectionPool, ConnectionState
from .exceptions import (
    CommandTimeoutError,
    ConnectionClosedError,
    ConnectivityError,
    PoolClosedError,
    PoolError,
    PoolTimeoutError,
    ProtocolError,
    RespKVError,
    ServerError,
)
from .protocol import Command, Reply, ReplyType, RespCodec

__version__ = "1.0.0"

__all__ = [
    "Command",
    "CommandTimeoutError",
    "Connection",
    "ConnectionClosedError",
    "ConnectionPool",
    "ConnectionState",
    "ConnectivityError",
    "PoolClosedError",
    "PoolError",
    "PoolTimeoutError",
    "ProtocolError",
    "Reply",
    "ReplyType",
    "RespCodec",
    "RespKVError",
    "ServerError",
]
