"""Protocol module for RESP-KV."""

from .codec import RespCodec
from .commands import Command, Reply, ReplyType

__all__ = [
    "Command",
    "Reply",
    "ReplyType",
    "RespCodec",
]
