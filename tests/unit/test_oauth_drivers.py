"""OAuth token drivers: Google over httpx, Microsoft over MSAL."""

from unittest.mock import MagicMock

import httpx
import pytest

from mailsync.domain.exceptions import (
    AuthRevokedException,
    MailSyncException,
    NetworkTransientException,
    RateLimitedException,
)
from mailsync.infrastructure.external.email import GoogleOAuthDriver, MicrosoftOAuthDriver
from mailsync.infrastructure.external.email.oauth_drivers import classify_token_error, parse_retry_after
from mailsync.shared.utils.datetime import utc_now


def _google(handler) -> GoogleOAuthDriver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleOAuthDriver("client-id", "client-secret", http_client=client)


async def test_google_refresh_posts_refresh_grant() -> None:
    """Access token rotates; a missing refresh_token keeps the old one."""
    seen = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"access_token": "ya29.new", "expires_in": 3599, "scope": "gmail"})

    tokens = await _google(_handler).refresh_access_token("1//old")

    body = seen[0].content.decode()
    assert "grant_type=refresh_token" in body
    assert "refresh_token=1%2F%2Fold" in body
    assert tokens.access_token == "ya29.new"
    assert tokens.refresh_token == "1//old"
    assert tokens.expires_at > utc_now()
    assert "ya29.new" not in repr(tokens)


async def test_google_invalid_grant_is_revoked() -> None:
    driver = _google(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
    with pytest.raises(AuthRevokedException) as exc_info:
        await driver.refresh_access_token("1//old")
    assert exc_info.value.details["vendor_error"] == "invalid_grant"


async def test_google_throttled_refresh_carries_retry_after() -> None:
    driver = _google(lambda request: httpx.Response(429, headers={"Retry-After": "12"}, text="slow down"))
    with pytest.raises(RateLimitedException) as exc_info:
        await driver.refresh_access_token("1//old")
    assert exc_info.value.retry_after == 12.0


async def test_google_unreachable_is_transient() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(NetworkTransientException):
        await _google(_handler).refresh_access_token("1//old")


async def test_microsoft_refresh_uses_msal_app() -> None:
    app = MagicMock()
    app.acquire_token_by_refresh_token.return_value = {
        "access_token": "eyJ.new",
        "refresh_token": "M.rotated",
        "expires_in": 3600,
    }
    driver = MicrosoftOAuthDriver("client-id", "client-secret", app=app)

    tokens = await driver.refresh_access_token("M.old")

    app.acquire_token_by_refresh_token.assert_called_once_with("M.old", scopes=MicrosoftOAuthDriver.SCOPES)
    assert tokens.access_token == "eyJ.new"
    assert tokens.refresh_token == "M.rotated"


async def test_microsoft_interaction_required_is_revoked() -> None:
    app = MagicMock()
    app.acquire_token_by_refresh_token.return_value = {
        "error": "interaction_required",
        "error_description": "AADSTS50076",
    }
    driver = MicrosoftOAuthDriver("client-id", "client-secret", app=app)
    with pytest.raises(AuthRevokedException):
        await driver.refresh_access_token("M.old")


async def test_microsoft_connection_error_is_transient() -> None:
    app = MagicMock()
    app.acquire_token_by_refresh_token.side_effect = ConnectionError("reset")
    driver = MicrosoftOAuthDriver("client-id", "client-secret", app=app)
    with pytest.raises(NetworkTransientException):
        await driver.refresh_access_token("M.old")


@pytest.mark.parametrize(
    ("status", "payload", "expected"),
    [
        (400, {"error": "invalid_grant"}, AuthRevokedException),
        (401, {"error": "unauthorized_client"}, AuthRevokedException),
        (429, {}, RateLimitedException),
        (503, {}, NetworkTransientException),
        (400, {"error": "invalid_request"}, MailSyncException),
    ],
)
def test_classify_token_error(status, payload, expected) -> None:
    assert type(classify_token_error("Vendor", status, payload)) is expected


@pytest.mark.parametrize(("value", "expected"), [("30", 30.0), ("-5", 0.0), (None, None), ("Wed, 21 Oct 2015", None)])
def test_parse_retry_after(value, expected) -> None:
    assert parse_retry_after(value) == expected
