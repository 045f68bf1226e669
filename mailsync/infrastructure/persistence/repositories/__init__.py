"""SQLAlchemy repositories."""

from mailsync.infrastructure.persistence.repositories.email_repo import EmailRepository
from mailsync.infrastructure.persistence.repositories.folder_repo import FolderRepository
from mailsync.infrastructure.persistence.repositories.provider_config_repo import (
    ProviderConfigRepository,
    apply_credentials,
    to_snapshot,
)

__all__ = [
    "EmailRepository",
    "FolderRepository",
    "ProviderConfigRepository",
    "apply_credentials",
    "to_snapshot",
]
