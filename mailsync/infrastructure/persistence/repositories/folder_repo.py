"""Folder repository."""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.folder import Folder
from mailsync.infrastructure.persistence.repositories.base import BaseRepository


class FolderRepository(BaseRepository[Folder]):
    """Folder repository."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db, Folder)

    async def get_for_provider(self, provider_id: str) -> dict[str, Folder]:
        """Folders of a provider keyed by remote id."""
        result = await self.db.execute(
            select(Folder).where(Folder.provider_id == provider_id).order_by(Folder.remote_id)
        )
        return {row.remote_id: row for row in result.scalars()}

    async def delete_missing(self, provider_id: str, keep_remote_ids: set[str]) -> None:
        """Drop folders the vendor no longer reports."""
        stmt = delete(Folder).where(Folder.provider_id == provider_id)
        if keep_remote_ids:
            stmt = stmt.where(Folder.remote_id.not_in(keep_remote_ids))
        await self.db.execute(stmt)

    async def delete_for_provider(self, provider_id: str) -> None:
        await self.db.execute(delete(Folder).where(Folder.provider_id == provider_id))
