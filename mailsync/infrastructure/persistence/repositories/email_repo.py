"""Email repository: lookups and bulk operations keyed by (provider_id, external_id)."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.repositories.base import BaseRepository

# Keep IN (...) lists well under driver parameter limits.
_CHUNK = 500


def _chunks(values: list[str]) -> Iterable[list[str]]:
    for start in range(0, len(values), _CHUNK):
        yield values[start : start + _CHUNK]


class EmailRepository(BaseRepository[Email]):
    """Email repository."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, Email)

    async def get_by_external_id(self, provider_id: str, external_id: str) -> Email | None:
        result = await self.db.execute(
            select(Email).where(
                Email.provider_id == provider_id,
                Email.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_external_ids(
        self, provider_id: str, external_ids: list[str]
    ) -> dict[str, Email]:
        """Existing rows for the given ids, keyed by external id."""
        found: dict[str, Email] = {}
        for chunk in _chunks(external_ids):
            result = await self.db.execute(
                select(Email).where(
                    Email.provider_id == provider_id,
                    Email.external_id.in_(chunk),
                )
            )
            for row in result.scalars():
                found[row.external_id] = row
        return found

    async def delete_by_external_ids(self, provider_id: str, external_ids: list[str]) -> list[str]:
        """Delete rows; returns the external ids that existed."""
        deleted: list[str] = []
        for chunk in _chunks(external_ids):
            result = await self.db.execute(
                select(Email.external_id).where(
                    Email.provider_id == provider_id,
                    Email.external_id.in_(chunk),
                )
            )
            existing = list(result.scalars().all())
            if not existing:
                continue
            await self.db.execute(
                delete(Email).where(
                    Email.provider_id == provider_id,
                    Email.external_id.in_(existing),
                )
            )
            deleted.extend(existing)
        return deleted

    async def delete_for_provider(self, provider_id: str) -> None:
        await self.db.execute(delete(Email).where(Email.provider_id == provider_id))

    async def counts_by_folder(self, provider_id: str) -> dict[str, tuple[int, int]]:
        """(total, unread) per canonical folder, computed from rows."""
        unread = func.sum(case((Email.is_read.is_(False), 1), else_=0))
        result = await self.db.execute(
            select(Email.folder, func.count(), unread)
            .where(Email.provider_id == provider_id)
            .group_by(Email.folder)
        )
        return {folder: (int(total), int(unread_count or 0)) for folder, total, unread_count in result.all()}

    async def count_for_provider(self, provider_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Email).where(Email.provider_id == provider_id)
        )
        return int(result.scalar_one())
