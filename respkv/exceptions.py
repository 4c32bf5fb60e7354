"""
RESP-KV Exceptions

Failures are split into three kinds so callers can react to each one:

- ConnectivityError: the socket could not be opened, was reset, or timed out.
  Recoverable by reconnecting or letting the pool replace the connection.
- ProtocolError: the peer sent bytes that are not a valid reply. The
  connection is no longer usable and should be discarded.
- ServerError: the server answered with a ``-`` error reply. The connection
  is still healthy.
"""


class RespKVError(Exception):
    """Base class for all RESP-KV errors."""


class ConnectivityError(RespKVError):
    """Dial, reconnect, reset or read failure on the underlying socket."""


class CommandTimeoutError(ConnectivityError):
    """A command did not complete within its deadline."""


class ProtocolError(RespKVError):
    """A reply violated the RESP framing rules."""


class ConnectionClosedError(ConnectivityError, ProtocolError):
    """The stream ended before a complete reply was read."""


class ServerError(RespKVError):
    """The server replied with an error message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PoolError(RespKVError):
    """Base class for connection pool errors."""


class PoolClosedError(PoolError):
    """The pool has been closed and no longer lends connections."""


class PoolTimeoutError(PoolError):
    """No connection became available before the borrow timeout."""
