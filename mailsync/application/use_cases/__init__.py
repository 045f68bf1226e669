"""Application use cases: one entry point per workflow."""

from mailsync.application.use_cases.sync import SyncPassUseCase

__all__ = ["SyncPassUseCase"]
