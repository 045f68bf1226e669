"""Folder ORM model. Per-provider folder with cached counts."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import TenantScopedRow


class Folder(TenantScopedRow, Base):
    """Mailbox folder. Counts are a cache rebuilt from email rows. Table: folder."""

    __tablename__ = "folder"
    __table_args__ = (
        UniqueConstraint("provider_id", "remote_id", name="uq_folder_provider_remote"),
    )

    provider_id: Mapped[str] = mapped_column(
        String, ForeignKey("provider_config.id", ondelete="CASCADE"), nullable=False, index=True
    )
    remote_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    canonical_name: Mapped[str] = mapped_column(String, nullable=False)
    special_use: Mapped[str | None] = mapped_column(String(16), nullable=True)
    total_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
