"""Domain enumerations for mailbox synchronization.

Enums represent fixed sets of domain values (vendors, folders, job reasons).
"""

from enum import Enum


class ProviderType(str, Enum):
    """Vendor family of a connected mailbox.

    Each value selects one adapter variant and its cursor encoding.
    """

    GMAIL = "gmail"
    OUTLOOK = "outlook"
    IMAP = "imap"

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid provider type strings."""
        return [p.value for p in cls]


class CanonicalFolder(str, Enum):
    """Vendor-independent folder vocabulary.

    SOCIAL/PROMOTIONS/UPDATES/FORUMS come from the category table; anything
    else that is not listed here is a custom folder (raw uppercased name).
    """

    INBOX = "INBOX"
    SENT = "SENT"
    TRASH = "TRASH"
    DRAFTS = "DRAFTS"
    ARCHIVE = "ARCHIVE"
    SPAM = "SPAM"
    OUTBOX = "OUTBOX"
    SOCIAL = "SOCIAL"
    PROMOTIONS = "PROMOTIONS"
    UPDATES = "UPDATES"
    FORUMS = "FORUMS"


# Folders that can carry a Folder.special_use tag.
SPECIAL_USE_FOLDERS = frozenset({
    CanonicalFolder.INBOX,
    CanonicalFolder.SENT,
    CanonicalFolder.TRASH,
    CanonicalFolder.DRAFTS,
    CanonicalFolder.ARCHIVE,
    CanonicalFolder.SPAM,
})


class SyncJobReason(str, Enum):
    """Why a sync job was submitted."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class JobPriority(int, Enum):
    """Queue priority; lower value is leased first."""

    URGENT = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3


class SyncState(str, Enum):
    """States of a single sync pass."""

    IDLE = "idle"
    LOCKING = "locking"
    AUTHENTICATING = "authenticating"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    CHECKPOINTING = "checkpointing"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorClass(str, Enum):
    """Failure taxonomy used for classification and backoff."""

    AUTH_EXPIRED = "auth_expired"
    AUTH_REVOKED = "auth_revoked"
    RATE_LIMITED = "rate_limited"
    CURSOR_INVALIDATED = "cursor_invalidated"
    NETWORK_TRANSIENT = "network_transient"
    DATA_INTEGRITY = "data_integrity"
    TIMEOUT = "timeout"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class MutationEventType(str, Enum):
    """Realtime event types delivered to tenant subscribers."""

    EMAIL_UPDATE = "emailUpdate"
    CALENDAR_UPDATE = "calendarUpdate"
    CONTACT_UPDATE = "contactUpdate"
    HEARTBEAT = "heartbeat"


class MutationReason(str, Enum):
    """Why a mutation event was published."""

    MESSAGE_PROCESSED = "message-processed"
    MESSAGE_DELETED = "message-deleted"
    LABELS_UPDATED = "labels-updated"
    SYNC_COMPLETE = "sync-complete"
    SYNC_FAILED = "sync-failed"
    PROVIDER_DEACTIVATED = "provider-deactivated"
    HEARTBEAT = "heartbeat"
