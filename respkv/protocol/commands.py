"""
Protocol Command and Reply Definitions

This module defines the data structures that travel over the wire:
commands sent by the client and replies sent back by the server.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Tuple, Union

Argument = Union[str, bytes, int]


def to_bytes(arg: Argument) -> bytes:
    """Convert a command argument to its wire form (UTF-8 for text)."""
    if isinstance(arg, bytes):
        return arg
    if isinstance(arg, bool):
        raise TypeError("boolean arguments are not supported")
    if isinstance(arg, int):
        return str(arg).encode("ascii")
    if isinstance(arg, str):
        return arg.encode("utf-8")
    raise TypeError(f"unsupported argument type: {type(arg).__name__}")


class ReplyType(Enum):
    """Enumeration of decoded reply kinds."""
    SIMPLE_STRING = auto()
    BULK_STRING = auto()
    ERROR = auto()


@dataclass(frozen=True)
class Command:
    """
    An ordered sequence of byte strings: the verb followed by its arguments.

    Example:
        >>> Command.build("SET", "key", "value", 60).args
        (b'SET', b'key', b'value', b'60')
    """
    args: Tuple[bytes, ...]

    @classmethod
    def build(cls, *args: Argument) -> "Command":
        """Create a command from str, bytes or int arguments."""
        if not args:
            raise ValueError("a command needs at least a verb")
        return cls(args=tuple(to_bytes(arg) for arg in args))

    @property
    def name(self) -> str:
        """The upper-cased command verb."""
        return self.args[0].decode("utf-8", errors="replace").upper()

    @property
    def arguments(self) -> Tuple[bytes, ...]:
        """Everything after the verb."""
        return self.args[1:]


@dataclass(frozen=True)
class Reply:
    """
    A single decoded reply.

    Attributes:
        type: SIMPLE_STRING, BULK_STRING or ERROR
        value: text for simple strings and errors; bytes for bulk strings,
            or None when the bulk string is absent ($-1)
    """
    type: ReplyType
    value: Optional[Union[str, bytes]] = None

    @classmethod
    def simple(cls, text: str) -> "Reply":
        """Create a simple-string reply."""
        return cls(type=ReplyType.SIMPLE_STRING, value=text)

    @classmethod
    def bulk(cls, data: Optional[bytes]) -> "Reply":
        """Create a bulk-string reply; None means the key is absent."""
        return cls(type=ReplyType.BULK_STRING, value=data)

    @classmethod
    def error(cls, message: str) -> "Reply":
        """Create an error reply."""
        return cls(type=ReplyType.ERROR, value=message)

    @classmethod
    def ok(cls) -> "Reply":
        return cls.simple("OK")

    @classmethod
    def pong(cls) -> "Reply":
        return cls.simple("PONG")

    @classmethod
    def null(cls) -> "Reply":
        return cls.bulk(None)

    @property
    def is_absent(self) -> bool:
        """True for the absent bulk string."""
        return self.type == ReplyType.BULK_STRING and self.value is None
