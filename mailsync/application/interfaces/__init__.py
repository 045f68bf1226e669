"""Application ports (protocols) implemented by infrastructure."""

from mailsync.application.interfaces.messaging import (
    IEventBus,
    IJobQueue,
    IProviderLockManager,
)
from mailsync.application.interfaces.providers import ICredentialVault, IMailProvider
from mailsync.application.interfaces.store import ISyncStore

__all__ = [
    "ICredentialVault",
    "IEventBus",
    "IJobQueue",
    "IMailProvider",
    "IProviderLockManager",
    "ISyncStore",
]
