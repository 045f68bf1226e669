"""Domain value objects."""

from mailsync.domain.value_objects.cursors import (
    Cursor,
    GmailCursor,
    ImapCursor,
    ImapFolderState,
    OutlookCursor,
    decode_cursor,
)

__all__ = [
    "Cursor",
    "GmailCursor",
    "ImapCursor",
    "ImapFolderState",
    "OutlookCursor",
    "decode_cursor",
]
