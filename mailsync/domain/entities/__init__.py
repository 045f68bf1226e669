"""Domain entities.

Pure domain models; no ORM or persistence concerns.
"""

from mailsync.domain.entities.mailbox import (
    NormalizedEmail,
    NormalizedFolder,
    RemoteFolder,
    RemoteMessage,
)
from mailsync.domain.entities.provider import (
    Credential,
    CredentialBundle,
    EncryptedSecret,
    ProviderSnapshot,
)
from mailsync.domain.entities.sync import MutationEvent, SyncJob

__all__ = [
    "Credential",
    "CredentialBundle",
    "EncryptedSecret",
    "MutationEvent",
    "NormalizedEmail",
    "NormalizedFolder",
    "ProviderSnapshot",
    "RemoteFolder",
    "RemoteMessage",
    "SyncJob",
]
