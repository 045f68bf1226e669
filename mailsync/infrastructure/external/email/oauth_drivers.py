"""OAuth token drivers: refresh access tokens and classify vendor refusals."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, ClassVar

import httpx
from msal import ConfidentialClientApplication

from mailsync.domain.exceptions import (
    AuthRevokedException,
    MailSyncException,
    NetworkTransientException,
    RateLimitedException,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)

# Vendor error codes that mean the user must reconnect.
PERMANENT_ERRORS = frozenset({
    "invalid_grant",
    "unauthorized_client",
    "invalid_client",
    "access_denied",
    "consent_required",
    "interaction_required",
})


@dataclass
class OAuthTokens:
    """Normalized OAuth token response."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime
    scope: str | None = None

    def __repr__(self) -> str:
        return f"OAuthTokens(expires_at={self.expires_at!r}, scope={self.scope!r})"


def parse_retry_after(value: str | None) -> float | None:
    """Retry-After header in seconds (HTTP-date form is ignored)."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_token_error(
    provider_name: str,
    status_code: int,
    payload: dict[str, Any],
    retry_after: float | None = None,
) -> MailSyncException:
    """Map a failed token response to the sync error taxonomy."""
    error = str(payload.get("error") or "")
    if error in PERMANENT_ERRORS:
        return AuthRevokedException(
            f"{provider_name} refused token refresh",
            vendor_error=error,
        )
    if status_code == 429:
        return RateLimitedException(retry_after)
    if status_code >= 500:
        return NetworkTransientException(
            f"{provider_name} token endpoint returned {status_code}"
        )
    return MailSyncException(
        f"{provider_name} token refresh failed with status {status_code}",
        "TOKEN_REFRESH_FAILED",
        {"status": status_code, "vendor_error": error or None},
    )


class OAuthDriver(ABC):
    """Abstract OAuth driver: refresh one access token."""

    PROVIDER_NAME: ClassVar[str]

    def __init__(self, client_id: str, client_secret: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token; raise a taxonomy exception on failure."""

    @staticmethod
    def _normalize_token_response(token_data: dict[str, Any], refresh_token: str) -> OAuthTokens:
        expires_in = int(token_data.get("expires_in", 3600))
        return OAuthTokens(
            access_token=token_data["access_token"],
            # Vendors may omit refresh_token when it did not rotate.
            refresh_token=token_data.get("refresh_token") or refresh_token,
            expires_at=utc_now() + timedelta(seconds=expires_in),
            scope=token_data.get("scope"),
        )


class GoogleOAuthDriver(OAuthDriver):
    """Google OAuth driver (token endpoint over httpx)."""

    PROVIDER_NAME = "Gmail"
    TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client_id, client_secret)
        self._shared_http = http_client

    @asynccontextmanager
    async def _http_cm(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield shared HTTP client or a short-lived one."""
        if self._shared_http is not None:
            yield self._shared_http
            return
        async with httpx.AsyncClient(timeout=30.0) as client:
            yield client

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        try:
            async with self._http_cm() as client:
                response = await client.post(
                    self.TOKEN_ENDPOINT,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.TransportError as e:
            raise NetworkTransientException(f"Gmail token endpoint unreachable: {type(e).__name__}") from e

        if response.status_code != 200:
            logger.error(
                "%s token refresh failed: status=%d",
                self.PROVIDER_NAME,
                response.status_code,
            )
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            raise classify_token_error(
                self.PROVIDER_NAME,
                response.status_code,
                payload if isinstance(payload, dict) else {},
                parse_retry_after(response.headers.get("Retry-After")),
            )
        return self._normalize_token_response(response.json(), refresh_token)


class MicrosoftOAuthDriver(OAuthDriver):
    """Microsoft identity platform driver (MSAL)."""

    PROVIDER_NAME = "Microsoft 365"
    SCOPES: ClassVar[list[str]] = [
        "https://graph.microsoft.com/Mail.Read",
        "https://graph.microsoft.com/User.Read",
    ]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        authority: str = "https://login.microsoftonline.com/common",
        app: ConfidentialClientApplication | None = None,
    ) -> None:
        super().__init__(client_id, client_secret)
        self._authority = authority
        self._app = app

    def _get_app(self) -> ConfidentialClientApplication:
        if self._app is None:
            self._app = ConfidentialClientApplication(
                self.client_id,
                authority=self._authority,
                client_credential=self.client_secret,
            )
        return self._app

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokens:
        app = self._get_app()
        try:
            result = await asyncio.to_thread(
                app.acquire_token_by_refresh_token,
                refresh_token,
                scopes=self.SCOPES,
            )
        except OSError as e:
            # requests' exceptions derive from OSError.
            raise NetworkTransientException(
                f"Microsoft token endpoint unreachable: {type(e).__name__}"
            ) from e

        if "access_token" not in result:
            logger.error(
                "%s token refresh failed: error=%s",
                self.PROVIDER_NAME,
                result.get("error"),
            )
            status = 400 if result.get("error") else 500
            raise classify_token_error(self.PROVIDER_NAME, status, result)
        return self._normalize_token_response(result, refresh_token)
