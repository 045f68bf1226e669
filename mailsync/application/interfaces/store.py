"""Sync Store port.

The store is the only shared mutable resource across workers. Every
cross-field provider mutation of a pass goes through commit_pass or
record_failure, each a single transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from mailsync.application.dtos import (
        CommitResult,
        FailureCheckpoint,
        PassCommit,
        SyncStatistics,
    )
    from mailsync.domain.entities import CredentialBundle, ProviderSnapshot
    from mailsync.domain.enums import ProviderType


class ISyncStore(Protocol):
    """Protocol for the durable sync state (DIP)."""

    async def list_due_providers(self, now: datetime, limit: int) -> list[ProviderSnapshot]:
        """Active providers with next_sync_at null or <= now, oldest-due first."""

    async def get_provider(self, provider_id: str) -> ProviderSnapshot | None:
        """Return one provider or None."""

    async def commit_pass(self, commit: PassCommit) -> CommitResult:
        """Apply a whole pass atomically (emails, folders, cursor, checkpoint)."""

    async def record_failure(self, failure: FailureCheckpoint) -> None:
        """Write error streak, error class and next_sync_at in one transaction."""

    async def replace_credentials(
        self,
        provider_id: str,
        credentials: CredentialBundle,
        token_expires_at: datetime | None,
    ) -> None:
        """Replace access and refresh secrets together."""

    async def deactivate(self, provider_id: str, reason: str, *, wipe_credentials: bool = False) -> None:
        """Soft-deactivate; the scheduler never selects inactive providers."""

    async def create_provider(
        self,
        *,
        tenant_id: str,
        provider_type: ProviderType,
        email_address: str,
        credentials: CredentialBundle,
        token_expires_at: datetime | None = None,
        connection_params: dict[str, Any] | None = None,
    ) -> ProviderSnapshot:
        """Insert or reactivate a provider for (tenant, type, email)."""

    async def delete_provider(self, provider_id: str) -> bool:
        """Hard-delete a provider with its emails and folders."""

    async def move_email_local(self, provider_id: str, external_id: str, folder: str) -> None:
        """User-initiated move; later passes do not revert it."""

    async def recompute_folder_counts(self, provider_id: str) -> None:
        """Rebuild folder total/unread counts from email rows."""

    async def sync_statistics(self, now: datetime) -> SyncStatistics:
        """Aggregate provider health."""
