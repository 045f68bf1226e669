"""Internal operations HTTP app."""

from mailsync.api.app import create_app

__all__ = ["create_app"]
