"""ORM models. Importing this package registers every table on Base.metadata."""

from mailsync.infrastructure.persistence.models.email import Email
from mailsync.infrastructure.persistence.models.folder import Folder
from mailsync.infrastructure.persistence.models.provider_config import ProviderConfig

__all__ = ["Email", "Folder", "ProviderConfig"]
