"""Network module for RESP-KV."""

from .tcp_server import RespServer, run_server

__all__ = ["RespServer", "run_server"]
