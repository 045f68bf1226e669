"""Provider config repository: due selection, identity lookup, snapshots."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.entities import CredentialBundle, EncryptedSecret, ProviderSnapshot
from mailsync.domain.enums import ProviderType
from mailsync.infrastructure.persistence.models.provider_config import ProviderConfig
from mailsync.infrastructure.persistence.repositories.base import BaseRepository
from mailsync.shared.utils.datetime import ensure_utc


def to_snapshot(row: ProviderConfig) -> ProviderSnapshot:
    """Detach a row into a read-only ProviderSnapshot."""
    credentials = None
    if row.access_token_ciphertext and row.access_token_iv:
        refresh = None
        if row.refresh_token_ciphertext and row.refresh_token_iv:
            refresh = EncryptedSecret(row.refresh_token_ciphertext, row.refresh_token_iv)
        credentials = CredentialBundle(
            access=EncryptedSecret(row.access_token_ciphertext, row.access_token_iv),
            refresh=refresh,
        )
    return ProviderSnapshot(
        id=row.id,
        tenant_id=row.tenant_id,
        provider_type=ProviderType(row.provider_type),
        email_address=row.email_address,
        credentials=credentials,
        token_expires_at=ensure_utc(row.token_expires_at),
        connection_params=dict(row.connection_params or {}),
        sync_priority=row.sync_priority,
        error_streak=row.error_streak,
        avg_activity_rate=row.avg_activity_rate,
        last_synced_at=ensure_utc(row.last_synced_at),
        next_sync_at=ensure_utc(row.next_sync_at),
        cursor=row.cursor,
        is_active=row.is_active,
        last_error=row.last_error,
        last_error_class=row.last_error_class,
    )


def apply_credentials(
    row: ProviderConfig,
    credentials: CredentialBundle | None,
    token_expires_at: datetime | None,
) -> None:
    """Write both secrets and their IVs together (None wipes them)."""
    access = credentials.access if credentials else None
    refresh = credentials.refresh if credentials else None
    row.access_token_ciphertext = access.ciphertext if access else None
    row.access_token_iv = access.iv if access else None
    row.refresh_token_ciphertext = refresh.ciphertext if refresh else None
    row.refresh_token_iv = refresh.iv if refresh else None
    row.token_expires_at = token_expires_at


class ProviderConfigRepository(BaseRepository[ProviderConfig]):
    """Provider config repository."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, ProviderConfig)

    async def get_due(self, now: datetime, limit: int) -> list[ProviderConfig]:
        """Active providers due at now, oldest-due first (never-synced first)."""
        result = await self.db.execute(
            select(ProviderConfig)
            .where(
                ProviderConfig.is_active.is_(True),
                or_(
                    ProviderConfig.next_sync_at.is_(None),
                    ProviderConfig.next_sync_at <= now,
                ),
            )
            .order_by(
                ProviderConfig.next_sync_at.asc().nulls_first(),
                ProviderConfig.sync_priority.asc(),
                ProviderConfig.id.asc(),
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_by_identity(
        self, tenant_id: str, provider_type: str, email_address: str
    ) -> ProviderConfig | None:
        result = await self.db.execute(
            select(ProviderConfig).where(
                ProviderConfig.tenant_id == tenant_id,
                ProviderConfig.provider_type == provider_type,
                ProviderConfig.email_address == email_address,
            )
        )
        return result.scalar_one_or_none()

    async def get_active(self) -> list[ProviderConfig]:
        result = await self.db.execute(
            select(ProviderConfig).where(ProviderConfig.is_active.is_(True))
        )
        return list(result.scalars().all())
