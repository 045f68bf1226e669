"""Provider adapter registry: resolves a provider type (or alias) to its adapter."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from mailsync.domain.enums import ProviderType
from mailsync.domain.exceptions import UnsupportedProviderException
from mailsync.shared.telemetry.logging import get_logger

if TYPE_CHECKING:
    import httpx

    from mailsync.application.interfaces import IMailProvider
    from mailsync.core.config import Settings

logger = get_logger(__name__)


class ProviderAdapterRegistry:
    """Adapter instances by provider type, plus vendor aliases."""

    _aliases: ClassVar[dict[str, ProviderType]] = {
        "gmail": ProviderType.GMAIL,
        "google": ProviderType.GMAIL,
        "outlook": ProviderType.OUTLOOK,
        "microsoft": ProviderType.OUTLOOK,
        "office365": ProviderType.OUTLOOK,
        "imap": ProviderType.IMAP,
        "generic": ProviderType.IMAP,
        "icloud": ProviderType.IMAP,
        "yahoo": ProviderType.IMAP,
    }

    def __init__(self, adapters: dict[ProviderType, IMailProvider] | None = None) -> None:
        self._adapters: dict[ProviderType, IMailProvider] = dict(adapters or {})

    @classmethod
    def resolve_type(cls, name: str | ProviderType) -> ProviderType:
        """Map a provider type or alias to its ProviderType."""
        if isinstance(name, ProviderType):
            return name
        provider_type = cls._aliases.get(name.strip().lower())
        if provider_type is None:
            raise UnsupportedProviderException(name, cls.list_supported_providers())
        return provider_type

    @classmethod
    def list_supported_providers(cls) -> list[str]:
        return list(cls._aliases.keys())

    def register(self, provider_type: str | ProviderType, adapter: IMailProvider) -> None:
        """Register (or replace) the adapter serving a provider type."""
        resolved = self.resolve_type(provider_type)
        self._adapters[resolved] = adapter
        logger.info("Registered %s adapter: %s", resolved.value, type(adapter).__name__)

    def get(self, provider_type: str | ProviderType) -> IMailProvider:
        resolved = self.resolve_type(provider_type)
        adapter = self._adapters.get(resolved)
        if adapter is None:
            raise UnsupportedProviderException(
                resolved.value, [p.value for p in self._adapters]
            )
        return adapter

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> ProviderAdapterRegistry:
        """Build the default registry with Gmail, Outlook and IMAP adapters.

        http_client is shared by the Outlook adapter and the Google token
        driver for connection reuse.
        """
        from mailsync.infrastructure.external.email.oauth_drivers import (
            GoogleOAuthDriver,
            MicrosoftOAuthDriver,
        )
        from mailsync.infrastructure.external.email.providers.gmail_provider import GmailProvider
        from mailsync.infrastructure.external.email.providers.imap_provider import IMAPProvider
        from mailsync.infrastructure.external.email.providers.outlook_provider import OutlookProvider

        google = GoogleOAuthDriver(
            settings.google_client_id,
            settings.google_client_secret.get_secret_value(),
            http_client=http_client,
        )
        microsoft = MicrosoftOAuthDriver(
            settings.microsoft_client_id,
            settings.microsoft_client_secret.get_secret_value(),
            authority=settings.microsoft_authority,
        )
        return cls({
            ProviderType.GMAIL: GmailProvider(settings, google),
            ProviderType.OUTLOOK: OutlookProvider(settings, microsoft, http_client=http_client),
            ProviderType.IMAP: IMAPProvider(settings),
        })
