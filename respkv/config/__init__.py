"""Configuration module for RESP-KV."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
