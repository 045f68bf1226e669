"""DTOs for sync use cases (no dependency on ORM or presentation schemas)."""

from dataclasses import dataclass, field
from datetime import datetime

from mailsync.domain.entities import (
    NormalizedEmail,
    NormalizedFolder,
    RemoteMessage,
)
from mailsync.domain.enums import ErrorClass, SyncState
from mailsync.domain.value_objects import Cursor


@dataclass(frozen=True)
class ChangesPage:
    """One page of remote changes. has_more=True means call again with cursor."""

    messages: list[RemoteMessage]
    cursor: Cursor
    has_more: bool = False


@dataclass(frozen=True)
class RateLimited:
    """Vendor asked for backoff; retry_after in seconds when the vendor said so."""

    retry_after: float | None = None


FetchResult = ChangesPage | RateLimited


@dataclass(frozen=True)
class Checkpoint:
    """Provider scheduling fields written at the end of a successful pass."""

    last_synced_at: datetime
    avg_activity_rate: float
    sync_priority: int
    next_sync_at: datetime
    messages_synced: int


@dataclass(frozen=True)
class PassCommit:
    """Everything one pass persists, applied in a single transaction.

    previous_cursor is the cursor the pass started from; the store refuses the
    commit if the persisted cursor no longer matches it.
    """

    provider_id: str
    previous_cursor: str | None
    new_cursor: str | None
    emails: list[NormalizedEmail]
    deleted_external_ids: list[str]
    folders: list[NormalizedFolder]
    checkpoint: Checkpoint


@dataclass(frozen=True)
class CommitResult:
    """What commit_pass actually changed."""

    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cursor_written: bool = True


@dataclass(frozen=True)
class FailureCheckpoint:
    """Provider fields written when a pass fails."""

    provider_id: str
    error_class: ErrorClass
    error_message: str
    error_streak: int
    next_sync_at: datetime
    deactivate: bool = False


@dataclass(frozen=True)
class PassOutcome:
    """Result of one run of the sync pass state machine."""

    provider_id: str
    state: SyncState
    error_class: ErrorClass | None = None
    messages: int = 0
    pages: int = 0
    skipped: int = 0
    next_sync_at: datetime | None = None
    detail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == SyncState.DONE


@dataclass(frozen=True)
class SyncStatistics:
    """Aggregate view of scheduler and provider health."""

    active_providers: int
    never_synced: int
    synced_last_24h: int
    in_error: int
    priority_distribution: dict[int, int]
    avg_activity_rate: float
    queue_depth: int = 0
