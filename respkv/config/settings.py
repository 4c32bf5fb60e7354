"""
RESP-KV Configuration Settings

This module contains the configuration constants shared by the client,
the connection pool and the companion server. Every value can be
overridden through an environment variable.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _optional_timeout(name: str, default: str) -> Optional[float]:
    """Read a timeout from the environment; 0 or negative disables it."""
    value = float(os.environ.get(name, default))
    return value if value > 0 else None


@dataclass
class Settings:
    """Client and server configuration settings."""

    # Network settings
    HOST: str = os.environ.get("RESPKV_HOST", "127.0.0.1")
    PORT: int = int(os.environ.get("RESPKV_PORT", "6380"))

    # Pool settings
    POOL_SIZE: int = int(os.environ.get("RESPKV_POOL_SIZE", "10"))
    BORROW_TIMEOUT: float = float(os.environ.get("RESPKV_BORROW_TIMEOUT", "5.0"))

    # Connection settings
    CONNECT_TIMEOUT: Optional[float] = _optional_timeout("RESPKV_CONNECT_TIMEOUT", "5.0")
    COMMAND_TIMEOUT: Optional[float] = _optional_timeout("RESPKV_COMMAND_TIMEOUT", "10.0")
    READ_BUFFER_SIZE: int = 64 * 1024
    MAX_BULK_LENGTH: int = 512 * 1024 * 1024

    # Server settings
    CLEANUP_INTERVAL: int = int(os.environ.get("RESPKV_CLEANUP_INTERVAL", "5"))
    AOF_PATH: str = os.environ.get("RESPKV_AOF_PATH", "")  # empty = no persistence

    # Logging settings
    DEBUG: bool = os.environ.get("RESPKV_DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.environ.get("RESPKV_LOG_LEVEL", "INFO")


# Global settings instance
settings = Settings()
