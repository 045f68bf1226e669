"""Provider-facing ports: mail adapters and the credential vault."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from mailsync.application.dtos import FetchResult
    from mailsync.domain.entities import (
        Credential,
        EncryptedSecret,
        ProviderSnapshot,
        RemoteFolder,
    )
    from mailsync.domain.enums import ProviderType
    from mailsync.domain.value_objects import Cursor


class IMailProvider(Protocol):
    """Uniform capability interface every vendor adapter satisfies."""

    provider_type: ProviderType

    async def refresh(self, credential: Credential) -> Credential:
        """Return a fresh credential.

        Raises AuthRevokedException on permanent vendor refusal and
        NetworkTransientException on transport failure.
        """

    async def fetch_changes(
        self,
        credential: Credential,
        cursor: Cursor | None,
    ) -> FetchResult:
        """Fetch one page of changes since cursor.

        cursor=None performs the bounded full sync. Returns RateLimited
        instead of raising when the vendor asks for backoff; raises
        CursorInvalidatedException when the vendor rejects the cursor.
        """

    async def fetch_folders(self, credential: Credential) -> list[RemoteFolder]:
        """List folders (or labels) with special-use hints and counts."""


class ICredentialVault(Protocol):
    """Encrypts secrets at rest and hands adapters valid credentials."""

    def encrypt(self, secret: str) -> EncryptedSecret:
        """Encrypt with a fresh IV."""

    def decrypt(self, secret: EncryptedSecret) -> str:
        """Decrypt; raises CredentialException on corrupted data."""

    async def ensure_valid(self, provider: ProviderSnapshot, *, force: bool = False) -> Credential:
        """Decrypt and refresh if expiry is within the safety margin.

        A successful refresh atomically replaces stored secrets; a failed one
        leaves them untouched.
        """
