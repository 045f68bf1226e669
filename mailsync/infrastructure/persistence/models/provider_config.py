"""ProviderConfig ORM model. One connected mailbox and its sync state."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import TenantScopedRow


class ProviderConfig(TenantScopedRow, Base):
    """Provider config, encrypted credentials and scheduling state. Table: provider_config."""

    __tablename__ = "provider_config"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "provider_type", "email_address",
            name="uq_provider_config_identity",
        ),
        Index("ix_provider_config_due", "is_active", "next_sync_at"),
    )

    provider_type: Mapped[str] = mapped_column(String(32), nullable=False)
    email_address: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # Hex ciphertext + hex IV per secret.
    access_token_ciphertext: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_iv: Mapped[str | None] = mapped_column(String(64), nullable=True)
    refresh_token_ciphertext: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_iv: Mapped[str | None] = mapped_column(String(64), nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    connection_params: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    sync_priority: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_activity_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_error: Mapped[str | None] = mapped_column(String, nullable=True)
    last_error_class: Mapped[str | None] = mapped_column(String(32), nullable=True)
    deactivated_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    emails_synced_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
