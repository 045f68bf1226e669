"""Email integration: adapter registry, OAuth drivers, credential vault, providers."""

from mailsync.infrastructure.external.email.credential_vault import (
    CredentialVault,
    SecretCipher,
    derive_key,
)
from mailsync.infrastructure.external.email.oauth_drivers import (
    GoogleOAuthDriver,
    MicrosoftOAuthDriver,
    OAuthDriver,
    OAuthTokens,
)
from mailsync.infrastructure.external.email.registry import ProviderAdapterRegistry

__all__ = [
    "CredentialVault",
    "GoogleOAuthDriver",
    "MicrosoftOAuthDriver",
    "OAuthDriver",
    "OAuthTokens",
    "ProviderAdapterRegistry",
    "SecretCipher",
    "derive_key",
]
