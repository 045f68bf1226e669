"""Provider domain entities.

ProviderSnapshot is a detached, read-only view of a provider_config row.
The sync worker owns mutations; every other component only reads snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from mailsync.domain.enums import ProviderType


@dataclass(frozen=True)
class EncryptedSecret:
    """One secret at rest: hex ciphertext plus hex IV."""

    ciphertext: str = field(repr=False)
    iv: str = field(repr=False)


@dataclass(frozen=True)
class CredentialBundle:
    """Encrypted access and refresh secrets of a provider."""

    access: EncryptedSecret
    refresh: EncryptedSecret | None = None


@dataclass
class Credential:
    """Decrypted, in-memory credential handed to adapters.

    Secrets are excluded from repr so a credential never leaks into logs.
    For IMAP providers access_token carries the account password.
    """

    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_at: datetime | None = None
    username: str | None = None
    params: dict[str, Any] = field(default_factory=dict)

    def expires_within(self, margin: timedelta, now: datetime) -> bool:
        """Return True when the token expires before now + margin."""
        if self.expires_at is None:
            return False
        return self.expires_at - now < margin


@dataclass(frozen=True)
class ProviderSnapshot:
    """Read-only view of one connected mailbox."""

    id: str
    tenant_id: str
    provider_type: ProviderType
    email_address: str
    credentials: CredentialBundle | None
    token_expires_at: datetime | None
    connection_params: dict[str, Any]
    sync_priority: int
    error_streak: int
    avg_activity_rate: float
    last_synced_at: datetime | None
    next_sync_at: datetime | None
    cursor: str | None
    is_active: bool
    last_error: str | None = None
    last_error_class: str | None = None

    def is_due(self, now: datetime) -> bool:
        """Return True when the scheduler may select this provider."""
        if not self.is_active:
            return False
        return self.next_sync_at is None or self.next_sync_at <= now
