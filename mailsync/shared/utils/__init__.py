"""Shared utilities: datetime and generators."""

from mailsync.shared.utils.datetime import (
    ensure_utc,
    from_timestamp_ms_utc,
    parse_iso8601_utc,
    utc_now,
)
from mailsync.shared.utils.generators import generate_cuid, generate_lock_token

__all__ = [
    "generate_cuid",
    "generate_lock_token",
    "utc_now",
    "ensure_utc",
    "from_timestamp_ms_utc",
    "parse_iso8601_utc",
]
