"""Credential Vault: secrets at rest and token freshness.

Secrets are encrypted with AES-256-CBC (PKCS7 padding) under a process-wide
key. Each secret is stored as (hex ciphertext, hex IV) with a fresh random IV.
Callers never see cipher primitives; nothing here logs a secret.
"""

from __future__ import annotations

import base64
import binascii
import os
from datetime import timedelta

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from mailsync.application.interfaces import IMailProvider, ISyncStore
from mailsync.core.config import Settings, get_settings
from mailsync.domain.entities import (
    Credential,
    CredentialBundle,
    EncryptedSecret,
    ProviderSnapshot,
)
from mailsync.domain.exceptions import AuthRevokedException, CredentialException
from mailsync.infrastructure.external.email.registry import ProviderAdapterRegistry
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now
from mailsync.shared.utils.retry import with_retry

logger = get_logger(__name__)

KEY_BYTES = 32
IV_BYTES = 16
PBKDF2_ITERATIONS = 100_000
DECRYPTION_ERROR_MSG = "Failed to decrypt credentials - invalid or corrupted data"


def derive_key(settings: Settings) -> bytes:
    """Raw CREDENTIAL_ENCRYPTION_KEY, or PBKDF2-HMAC-SHA256(secret_key, encryption_salt)."""
    if settings.credential_encryption_key is not None:
        return base64.b64decode(settings.credential_encryption_key.get_secret_value())
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=settings.encryption_salt.get_secret_value().encode(),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(settings.secret_key.get_secret_value().encode())


class SecretCipher:
    """AES-256-CBC encrypt/decrypt producing hex strings."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            raise ValueError(f"Encryption key must be {KEY_BYTES} bytes")
        self._key = key

    def encrypt(self, secret: str) -> EncryptedSecret:
        iv = os.urandom(IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(secret.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return EncryptedSecret(ciphertext=ciphertext.hex(), iv=iv.hex())

    def decrypt(self, secret: EncryptedSecret) -> str:
        try:
            iv = bytes.fromhex(secret.iv)
            ciphertext = bytes.fromhex(secret.ciphertext)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except (ValueError, binascii.Error, UnicodeDecodeError) as e:
            raise CredentialException(DECRYPTION_ERROR_MSG) from e


class CredentialVault:
    """Encrypts secrets and hands adapters credentials that are valid for the pass."""

    def __init__(
        self,
        store: ISyncStore,
        adapters: ProviderAdapterRegistry,
        settings: Settings | None = None,
        *,
        cipher: SecretCipher | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._adapters = adapters
        self._cipher = cipher or SecretCipher(derive_key(self._settings))
        self._margin = timedelta(seconds=self._settings.token_refresh_margin_seconds)

    def encrypt(self, secret: str) -> EncryptedSecret:
        return self._cipher.encrypt(secret)

    def decrypt(self, secret: EncryptedSecret) -> str:
        return self._cipher.decrypt(secret)

    def seal(self, credential: Credential) -> CredentialBundle:
        """Encrypt both secrets of a credential."""
        refresh = (
            self._cipher.encrypt(credential.refresh_token)
            if credential.refresh_token
            else None
        )
        return CredentialBundle(access=self._cipher.encrypt(credential.access_token), refresh=refresh)

    def open(self, provider: ProviderSnapshot) -> Credential:
        """Decrypt a provider's stored credential."""
        if provider.credentials is None:
            raise AuthRevokedException(f"Provider {provider.id} has no stored credentials")
        bundle = provider.credentials
        refresh_token = self._cipher.decrypt(bundle.refresh) if bundle.refresh else None
        params = dict(provider.connection_params)
        return Credential(
            access_token=self._cipher.decrypt(bundle.access),
            refresh_token=refresh_token,
            expires_at=provider.token_expires_at,
            username=params.get("username") or provider.email_address,
            params=params,
        )

    async def ensure_valid(self, provider: ProviderSnapshot, *, force: bool = False) -> Credential:
        """Return a credential valid for at least the refresh margin.

        force=True refreshes regardless of expiry (the vendor rejected the
        access token before it was due to expire).

        On refresh, both secrets and their IVs are replaced in one store
        write. A failed refresh raises and leaves the stored secrets as they
        were. Transient refresh failures are retried a few times first.
        """
        credential = self.open(provider)
        if not force and not credential.expires_within(self._margin, utc_now()):
            return credential
        if not credential.refresh_token:
            raise AuthRevokedException(
                "Access token expiring and no refresh token is stored",
                vendor_error="missing_refresh_token",
            )

        adapter: IMailProvider = self._adapters.get(provider.provider_type)

        @with_retry(self._settings)
        async def _refresh() -> Credential:
            return await adapter.refresh(credential)

        refreshed = await _refresh()
        if not refreshed.refresh_token:
            refreshed.refresh_token = credential.refresh_token
        refreshed.username = credential.username
        refreshed.params = credential.params
        await self._store.replace_credentials(provider.id, self.seal(refreshed), refreshed.expires_at)
        logger.info(
            "Refreshed %s token for provider %s",
            provider.provider_type.value,
            provider.id,
        )
        return refreshed
