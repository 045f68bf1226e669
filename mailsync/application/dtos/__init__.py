"""Application DTOs."""

from mailsync.application.dtos.sync import (
    ChangesPage,
    Checkpoint,
    CommitResult,
    FailureCheckpoint,
    FetchResult,
    PassCommit,
    PassOutcome,
    RateLimited,
    SyncStatistics,
)

__all__ = [
    "ChangesPage",
    "Checkpoint",
    "CommitResult",
    "FailureCheckpoint",
    "FetchResult",
    "PassCommit",
    "PassOutcome",
    "RateLimited",
    "SyncStatistics",
]
