"""Connect and disconnect mailboxes (called by the web layer)."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from mailsync.domain.entities import Credential, MutationEvent
from mailsync.domain.enums import MutationEventType, MutationReason, ProviderType
from mailsync.domain.exceptions import (
    ResourceNotFoundException,
    UnsupportedProviderException,
)
from mailsync.shared.telemetry.logging import get_logger

if TYPE_CHECKING:
    from mailsync.application.interfaces import IEventBus, ISyncStore
    from mailsync.domain.entities import CredentialBundle, ProviderSnapshot

logger = get_logger(__name__)

OAUTH_PROVIDERS = (ProviderType.GMAIL, ProviderType.OUTLOOK)


class CredentialSealer(Protocol):
    """The part of the credential vault used here."""

    def seal(self, credential: Credential) -> CredentialBundle: ...


class ProviderConnections:
    """Provider lifecycle: connect writes encrypted credentials, disconnect removes everything.

    A new or reconnected provider gets next_sync_at = None, so the next
    scheduler tick picks it up.
    """

    def __init__(self, store: ISyncStore, vault: CredentialSealer, events: IEventBus) -> None:
        self._store = store
        self._vault = vault
        self._events = events

    async def connect_oauth(
        self,
        *,
        tenant_id: str,
        provider_type: ProviderType | str,
        email_address: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
    ) -> ProviderSnapshot:
        """Store tokens from a completed OAuth flow."""
        resolved = _oauth_type(provider_type)
        bundle = self._vault.seal(
            Credential(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)
        )
        provider = await self._store.create_provider(
            tenant_id=tenant_id,
            provider_type=resolved,
            email_address=email_address,
            credentials=bundle,
            token_expires_at=expires_at,
        )
        logger.info("Connected %s provider %s for tenant %s", resolved.value, provider.id, tenant_id)
        return provider

    async def connect_imap(
        self,
        *,
        tenant_id: str,
        email_address: str,
        password: str,
        imap_server: str,
        imap_port: int = 993,
        use_ssl: bool = True,
        username: str | None = None,
    ) -> ProviderSnapshot:
        """Store an IMAP password; server settings go to connection_params."""
        bundle = self._vault.seal(Credential(access_token=password))
        provider = await self._store.create_provider(
            tenant_id=tenant_id,
            provider_type=ProviderType.IMAP,
            email_address=email_address,
            credentials=bundle,
            connection_params={
                "imap_server": imap_server,
                "imap_port": imap_port,
                "use_ssl": use_ssl,
                "username": username or email_address,
            },
        )
        logger.info("Connected IMAP provider %s (%s) for tenant %s", provider.id, imap_server, tenant_id)
        return provider

    async def disconnect(self, provider_id: str) -> None:
        """Deactivate and wipe credentials, then delete the provider with its emails and folders."""
        provider = await self._store.get_provider(provider_id)
        if provider is None:
            raise ResourceNotFoundException("ProviderConfig", provider_id)
        await self._store.deactivate(provider_id, "disconnected", wipe_credentials=True)
        await self._store.delete_provider(provider_id)
        await self._events.publish(
            MutationEvent(
                tenant_id=provider.tenant_id,
                type=MutationEventType.EMAIL_UPDATE,
                reason=MutationReason.PROVIDER_DEACTIVATED,
                provider_id=provider_id,
                data={"reason": "disconnected"},
            )
        )
        logger.info("Disconnected provider %s", provider_id)


def _oauth_type(provider_type: ProviderType | str) -> ProviderType:
    supported = [p.value for p in OAUTH_PROVIDERS]
    try:
        resolved = ProviderType(provider_type)
    except ValueError as e:
        raise UnsupportedProviderException(str(provider_type), supported) from e
    if resolved not in OAUTH_PROVIDERS:
        raise UnsupportedProviderException(resolved.value, supported)
    return resolved
