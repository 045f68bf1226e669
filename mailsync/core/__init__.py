"""Core: config and process bootstrap."""

from mailsync.core.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
