"""Email ORM model. Canonical message keyed by (provider_id, external_id)."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import TenantScopedRow


class Email(TenantScopedRow, Base):
    """Synchronized message. Table: email."""

    __tablename__ = "email"
    __table_args__ = (
        UniqueConstraint("provider_id", "external_id", name="uq_email_provider_external"),
        Index("ix_email_provider_folder", "provider_id", "folder"),
    )

    provider_id: Mapped[str] = mapped_column(
        String, ForeignKey("provider_config.id", ondelete="CASCADE"), nullable=False
    )
    external_id: Mapped[str] = mapped_column(String, nullable=False)
    thread_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    folder: Mapped[str] = mapped_column(String, nullable=False)
    # Folder came from the category table; applied on insert only.
    category_folder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # User moved the message locally; sync never overwrites folder.
    local_folder_override: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    labels: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    subject: Mapped[str] = mapped_column(Text, default="", nullable=False)
    from_address: Mapped[str] = mapped_column(String, default="", nullable=False)
    to_addresses: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_starred: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_attachments: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
