"""Sync use cases: the per-provider pass state machine."""

from mailsync.application.use_cases.sync.sync_pass import AdapterLookup, SyncPassUseCase

__all__ = ["AdapterLookup", "SyncPassUseCase"]
