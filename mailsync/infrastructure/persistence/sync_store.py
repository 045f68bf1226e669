"""SQLAlchemy implementation of the Sync Store.

Each public method runs in its own session and transaction. commit_pass
applies a whole pass (emails, deletions, folders, counts, cursor and
checkpoint) as one unit; a failure anywhere rolls all of it back and leaves
the previous cursor in place.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError, StatementError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.dtos import (
    CommitResult,
    FailureCheckpoint,
    PassCommit,
    SyncStatistics,
)
from mailsync.domain.entities import CredentialBundle, NormalizedEmail, NormalizedFolder, ProviderSnapshot
from mailsync.domain.enums import ProviderType
from mailsync.domain.exceptions import CursorConflictException, ResourceNotFoundException
from mailsync.infrastructure.persistence.database import get_session_factory
from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.models.folder import Folder
from mailsync.infrastructure.persistence.models.provider_config import ProviderConfig
from mailsync.infrastructure.persistence.repositories import (
    EmailRepository,
    FolderRepository,
    ProviderConfigRepository,
    apply_credentials,
    to_snapshot,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)

_MAX_ERROR_LENGTH = 500


def _apply_vendor_fields(row: Email, email: NormalizedEmail) -> None:
    """Overwrite vendor-authoritative fields on an existing row.

    The folder is left alone when the user moved the message locally or when
    the incoming folder is category-derived (applied on insert only).
    """
    if not row.local_folder_override and not email.category_folder:
        row.folder = email.folder
        row.category_folder = False
    row.labels = list(email.labels)
    row.is_read = email.is_read
    row.is_starred = email.is_starred
    row.has_attachments = email.has_attachments
    if email.thread_id is not None:
        row.thread_id = email.thread_id
    if email.subject:
        row.subject = email.subject
    if email.from_address:
        row.from_address = email.from_address
    if email.to_addresses:
        row.to_addresses = list(email.to_addresses)
    if email.received_at is not None:
        row.received_at = email.received_at
    if email.size_bytes is not None:
        row.size_bytes = email.size_bytes


def _new_email_row(tenant_id: str, provider_id: str, email: NormalizedEmail) -> Email:
    return Email(
        tenant_id=tenant_id,
        provider_id=provider_id,
        external_id=email.external_id,
        thread_id=email.thread_id,
        folder=email.folder,
        category_folder=email.category_folder,
        local_folder_override=False,
        labels=list(email.labels),
        subject=email.subject,
        from_address=email.from_address,
        to_addresses=list(email.to_addresses),
        received_at=email.received_at,
        is_read=email.is_read,
        is_starred=email.is_starred,
        has_attachments=email.has_attachments,
        size_bytes=email.size_bytes,
    )


class SqlSyncStore:
    """Sync Store over async SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def _get_row(self, session: AsyncSession, provider_id: str, *, for_update: bool = False) -> ProviderConfig:
        row = await ProviderConfigRepository(session).get_by_id(provider_id, for_update=for_update)
        if row is None:
            raise ResourceNotFoundException("ProviderConfig", provider_id)
        return row

    # Reads

    async def list_due_providers(self, now: datetime, limit: int) -> list[ProviderSnapshot]:
        async with self.session_factory() as session:
            rows = await ProviderConfigRepository(session).get_due(now, limit)
            return [to_snapshot(row) for row in rows]

    async def get_provider(self, provider_id: str) -> ProviderSnapshot | None:
        async with self.session_factory() as session:
            row = await ProviderConfigRepository(session).get_by_id(provider_id)
            return to_snapshot(row) if row else None

    async def get_email(self, provider_id: str, external_id: str) -> Email | None:
        """Read one email row (detached)."""
        async with self.session_factory() as session:
            return await EmailRepository(session).get_by_external_id(provider_id, external_id)

    async def list_folders(self, provider_id: str) -> list[Folder]:
        async with self.session_factory() as session:
            folders = await FolderRepository(session).get_for_provider(provider_id)
            return list(folders.values())

    async def count_emails(self, provider_id: str) -> int:
        async with self.session_factory() as session:
            return await EmailRepository(session).count_for_provider(provider_id)

    # Pass commit

    async def commit_pass(self, commit: PassCommit) -> CommitResult:
        """Apply a whole pass in one transaction.

        Each email is written inside a SAVEPOINT; a row that violates a
        constraint is rolled back alone and reported in skipped.
        """
        async with self.session_factory() as session, session.begin():
            row = await self._get_row(session, commit.provider_id, for_update=True)
            if row.cursor != commit.previous_cursor:
                raise CursorConflictException(commit.provider_id)

            inserted, updated, skipped = await self._upsert_emails(session, row, commit.emails)
            deleted = await EmailRepository(session).delete_by_external_ids(
                row.id, commit.deleted_external_ids
            )
            if commit.folders:
                await self._upsert_folders(session, row, commit.folders, commit.checkpoint.last_synced_at)
            await self._recompute_counts(session, row.id)

            cursor_written = commit.new_cursor is not None
            if cursor_written:
                row.cursor = commit.new_cursor

            checkpoint = commit.checkpoint
            row.last_synced_at = checkpoint.last_synced_at
            row.avg_activity_rate = checkpoint.avg_activity_rate
            row.sync_priority = checkpoint.sync_priority
            row.next_sync_at = checkpoint.next_sync_at
            row.error_streak = 0
            row.last_error = None
            row.last_error_class = None
            row.emails_synced_total = (row.emails_synced_total or 0) + len(inserted) + len(updated)
            await session.flush()

        logger.debug(
            "Committed pass for provider %s: %d inserted, %d updated, %d deleted, %d skipped",
            commit.provider_id,
            len(inserted),
            len(updated),
            len(deleted),
            len(skipped),
        )
        return CommitResult(
            inserted=inserted,
            updated=updated,
            deleted=deleted,
            skipped=skipped,
            cursor_written=cursor_written,
        )

    async def _upsert_emails(
        self,
        session: AsyncSession,
        provider: ProviderConfig,
        emails: list[NormalizedEmail],
    ) -> tuple[list[str], list[str], list[str]]:
        repo = EmailRepository(session)
        existing = await repo.get_by_external_ids(provider.id, [e.external_id for e in emails])
        inserted: list[str] = []
        updated: list[str] = []
        skipped: list[str] = []
        for email in emails:
            try:
                async with session.begin_nested():
                    current = existing.get(email.external_id)
                    if current is None:
                        session.add(_new_email_row(provider.tenant_id, provider.id, email))
                    else:
                        _apply_vendor_fields(current, email)
                    await session.flush()
            except (IntegrityError, StatementError) as e:
                logger.warning(
                    "Skipping email %s for provider %s: %s",
                    email.external_id,
                    provider.id,
                    type(e).__name__,
                )
                skipped.append(email.external_id)
                continue
            if current is None:
                inserted.append(email.external_id)
            else:
                updated.append(email.external_id)
        return inserted, updated, skipped

    async def _upsert_folders(
        self,
        session: AsyncSession,
        provider: ProviderConfig,
        folders: list[NormalizedFolder],
        synced_at: datetime,
    ) -> None:
        repo = FolderRepository(session)
        existing = await repo.get_for_provider(provider.id)
        seen: set[str] = set()
        for folder in folders:
            if folder.remote_id in seen:
                continue
            seen.add(folder.remote_id)
            row = existing.get(folder.remote_id)
            if row is None:
                row = Folder(
                    tenant_id=provider.tenant_id,
                    provider_id=provider.id,
                    remote_id=folder.remote_id,
                    total_count=0,
                    unread_count=0,
                )
                session.add(row)
            row.name = folder.name
            row.canonical_name = folder.canonical_name
            row.special_use = folder.special_use
            row.last_synced_at = synced_at
        await session.flush()
        await repo.delete_missing(provider.id, seen)

    async def _recompute_counts(self, session: AsyncSession, provider_id: str) -> None:
        """Write row counts onto folders.

        Emails only know their canonical folder, so when several vendor
        folders share one canonical name (IMAP "Sent" and "Sent Items") the
        count lands on a single row and the rest read zero.
        """
        counts = await EmailRepository(session).counts_by_folder(provider_id)
        folders = await FolderRepository(session).get_for_provider(provider_id)
        holders: dict[str, Folder] = {}
        for folder in sorted(folders.values(), key=lambda f: (f.name != f.canonical_name, f.remote_id)):
            holders.setdefault(folder.canonical_name, folder)
        for folder in folders.values():
            if holders[folder.canonical_name] is folder:
                total, unread = counts.get(folder.canonical_name, (0, 0))
            else:
                total, unread = 0, 0
            folder.total_count = total
            folder.unread_count = unread
        await session.flush()

    # Failure and lifecycle

    async def record_failure(self, failure: FailureCheckpoint) -> None:
        async with self.session_factory() as session, session.begin():
            row = await self._get_row(session, failure.provider_id, for_update=True)
            row.error_streak = failure.error_streak
            row.last_error = failure.error_message[:_MAX_ERROR_LENGTH]
            row.last_error_class = failure.error_class.value
            row.next_sync_at = failure.next_sync_at
            if failure.deactivate:
                row.is_active = False
                row.deactivated_reason = failure.error_class.value

    async def replace_credentials(
        self,
        provider_id: str,
        credentials: CredentialBundle,
        token_expires_at: datetime | None,
    ) -> None:
        async with self.session_factory() as session, session.begin():
            row = await self._get_row(session, provider_id, for_update=True)
            apply_credentials(row, credentials, token_expires_at)

    async def deactivate(self, provider_id: str, reason: str, *, wipe_credentials: bool = False) -> None:
        async with self.session_factory() as session, session.begin():
            row = await self._get_row(session, provider_id, for_update=True)
            row.is_active = False
            row.deactivated_reason = reason
            if wipe_credentials:
                apply_credentials(row, None, None)
        logger.info("Deactivated provider %s (%s)", provider_id, reason)

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
        """Insert a provider, or reactivate the existing one for the same mailbox.

        next_sync_at is left null so the next scheduler tick picks it up.
        """
        normalized_email = email_address.strip().lower()
        async with self.session_factory() as session, session.begin():
            repo = ProviderConfigRepository(session)
            row = await repo.get_by_identity(tenant_id, provider_type.value, normalized_email)
            if row is None:
                row = ProviderConfig(
                    tenant_id=tenant_id,
                    provider_type=provider_type.value,
                    email_address=normalized_email,
                    sync_priority=3,
                    error_streak=0,
                    avg_activity_rate=0.0,
                    emails_synced_total=0,
                )
                session.add(row)
            row.connection_params = dict(connection_params or {})
            apply_credentials(row, credentials, token_expires_at)
            row.is_active = True
            row.error_streak = 0
            row.next_sync_at = None
            row.deactivated_reason = None
            row.last_error = None
            row.last_error_class = None
            await session.flush()
            await session.refresh(row)
            snapshot = to_snapshot(row)
        logger.info("Connected %s provider %s for tenant %s", provider_type.value, snapshot.id, tenant_id)
        return snapshot

    async def delete_provider(self, provider_id: str) -> bool:
        async with self.session_factory() as session, session.begin():
            repo = ProviderConfigRepository(session)
            row = await repo.get_by_id(provider_id, for_update=True)
            if row is None:
                return False
            await EmailRepository(session).delete_for_provider(provider_id)
            await FolderRepository(session).delete_for_provider(provider_id)
            await repo.delete(row)
        logger.info("Deleted provider %s", provider_id)
        return True

    async def move_email_local(self, provider_id: str, external_id: str, folder: str) -> None:
        async with self.session_factory() as session, session.begin():
            row = await EmailRepository(session).get_by_external_id(provider_id, external_id)
            if row is None:
                raise ResourceNotFoundException("Email", external_id)
            row.folder = folder
            row.local_folder_override = True
            row.category_folder = False
            await session.flush()
            await self._recompute_counts(session, provider_id)

    async def recompute_folder_counts(self, provider_id: str) -> None:
        async with self.session_factory() as session, session.begin():
            await self._recompute_counts(session, provider_id)

    async def sync_statistics(self, now: datetime | None = None) -> SyncStatistics:
        now = now or utc_now()
        day_ago = now - timedelta(hours=24)
        async with self.session_factory() as session:
            rows = await ProviderConfigRepository(session).get_active()
        distribution = {tier: 0 for tier in range(1, 6)}
        never_synced = synced_recently = in_error = 0
        total_rate = 0.0
        for row in rows:
            distribution[row.sync_priority] = distribution.get(row.sync_priority, 0) + 1
            last = ensure_utc(row.last_synced_at)
            if last is None:
                never_synced += 1
            elif last >= day_ago:
                synced_recently += 1
            if row.error_streak > 0:
                in_error += 1
            total_rate += row.avg_activity_rate
        return SyncStatistics(
            active_providers=len(rows),
            never_synced=never_synced,
            synced_last_24h=synced_recently,
            in_error=in_error,
            priority_distribution=distribution,
            avg_activity_rate=total_rate / len(rows) if rows else 0.0,
        )
