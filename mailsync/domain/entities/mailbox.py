"""Mailbox domain entities: remote vendor data and its canonical form.

Remote* types are what adapters return (vendor vocabulary). Normalized*
types are what the store persists (canonical vocabulary).
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class RemoteMessage:
    """Universal message structure returned by every adapter.

    folder_ref is the vendor folder identifier the message lives in (Graph
    parentFolderId, IMAP mailbox name) or None when the vendor uses labels.
    """

    external_id: str
    thread_id: str | None = None
    folder_ref: str | None = None
    labels: list[str] = field(default_factory=list)
    subject: str = ""
    from_address: str = ""
    to_addresses: list[str] = field(default_factory=list)
    received_at: datetime | None = None
    is_read: bool = False
    is_starred: bool = False
    has_attachments: bool = False
    size_bytes: int | None = None
    deleted: bool = False


@dataclass
class RemoteFolder:
    """Folder (or Gmail label) as the vendor reports it."""

    remote_id: str
    name: str
    special_use_hint: str | None = None
    total_count: int | None = None
    unread_count: int | None = None
    selectable: bool = True


@dataclass
class NormalizedEmail:
    """Canonical message ready for upsert.

    category_folder is True when the folder came from the category table;
    such a folder is only written on insert.
    """

    external_id: str
    folder: str
    category_folder: bool
    labels: list[str]
    thread_id: str | None
    subject: str
    from_address: str
    to_addresses: list[str]
    received_at: datetime | None
    is_read: bool
    is_starred: bool
    has_attachments: bool
    size_bytes: int | None


@dataclass
class NormalizedFolder:
    """Canonical folder ready for upsert."""

    remote_id: str
    name: str
    canonical_name: str
    special_use: str | None
