"""Outlook/Office 365 provider using Microsoft Graph delta queries.

Paginated delta-link vendor: each call follows one @odata.nextLink page;
only the round's final @odata.deltaLink is a durable cursor.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from mailsync.application.dtos import ChangesPage, FetchResult, RateLimited
from mailsync.core.config import Settings
from mailsync.domain.entities import Credential, RemoteFolder, RemoteMessage
from mailsync.domain.enums import ProviderType
from mailsync.domain.exceptions import (
    AuthExpiredException,
    AuthRevokedException,
    CursorInvalidatedException,
    MailSyncException,
    NetworkTransientException,
    RateLimitedException,
)
from mailsync.domain.value_objects import Cursor, OutlookCursor
from mailsync.infrastructure.external.email.oauth_drivers import (
    MicrosoftOAuthDriver,
    parse_retry_after,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import parse_iso8601_utc, utc_now
from mailsync.shared.utils.retry import with_retry

logger = get_logger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
PAGE_SIZE = 100
MESSAGE_FIELDS = (
    "id,conversationId,parentFolderId,subject,from,toRecipients,receivedDateTime,"
    "isRead,flag,hasAttachments,categories"
)
CURSOR_INVALID_CODES = frozenset({"syncStateNotFound", "syncStateInvalid", "resyncRequired"})


def _graph_time(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class ChangeTrackingUnsupportedException(MailSyncException):
    """Graph refuses delta queries for this mailbox."""

    def __init__(self, vendor_message: str) -> None:
        super().__init__(
            "Graph change tracking is not supported for this mailbox",
            "GRAPH_CHANGE_TRACKING_UNSUPPORTED",
            {"vendor_message": vendor_message[:200]},
        )


class OutlookProvider:
    """Outlook adapter over Microsoft Graph."""

    provider_type = ProviderType.OUTLOOK

    def __init__(
        self,
        settings: Settings,
        oauth_driver: MicrosoftOAuthDriver,
        *,
        http_client: httpx.AsyncClient | None = None,
        graph_url: str = GRAPH_URL,
    ) -> None:
        self._settings = settings
        self._oauth = oauth_driver
        self._shared_http = http_client
        self._graph_url = graph_url
        self._retry = with_retry(settings)

    @asynccontextmanager
    async def _http_cm(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield shared HTTP client or a short-lived one (connection reuse when shared)."""
        if self._shared_http is not None:
            yield self._shared_http
            return
        async with httpx.AsyncClient(timeout=30.0) as client:
            yield client

    async def _get(
        self,
        credential: Credential,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """GET a Graph resource, translating failures to the sync taxonomy."""

        @self._retry
        async def _run() -> dict[str, Any]:
            try:
                async with self._http_cm() as client:
                    response = await client.get(
                        url,
                        params=params,
                        headers={
                            "Authorization": f"Bearer {credential.access_token}",
                            "Prefer": f"odata.maxpagesize={PAGE_SIZE}",
                        },
                    )
            except httpx.TransportError as e:
                raise NetworkTransientException(f"Graph unreachable: {type(e).__name__}") from e
            self._raise_for_status(response)
            return response.json()

        return await _run()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        code = str(error.get("code", "")) if isinstance(error, dict) else ""
        message = str(error.get("message", "")) if isinstance(error, dict) else ""
        if status == 410 or code in CURSOR_INVALID_CODES:
            raise CursorInvalidatedException("Graph delta token is no longer valid")
        if "changetracking" in code.lower() or "change tracking is not supported" in message.lower():
            raise ChangeTrackingUnsupportedException(message or code)
        if status == 429 or (status == 503 and "Retry-After" in response.headers):
            raise RateLimitedException(parse_retry_after(response.headers.get("Retry-After")))
        if status == 401:
            raise AuthExpiredException("Graph rejected the access token")
        if status >= 500:
            raise NetworkTransientException(f"Graph returned {status}")
        raise MailSyncException(
            f"Graph request failed with status {status}",
            "GRAPH_API_ERROR",
            {"status": status, "code": code or None},
        )

    # Auth

    async def refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise AuthRevokedException("No Microsoft refresh token", vendor_error="missing_refresh_token")
        tokens = await self._oauth.refresh_access_token(credential.refresh_token)
        return Credential(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            username=credential.username,
            params=credential.params,
        )

    # Changes

    async def fetch_changes(self, credential: Credential, cursor: Cursor | None) -> FetchResult:
        if cursor is not None and not isinstance(cursor, OutlookCursor):
            raise CursorInvalidatedException("Cursor does not belong to Outlook")
        try:
            if cursor is not None and not cursor.delta:
                return await self._timestamp_page(credential, cursor)
            try:
                return await self._delta_page(credential, cursor)
            except ChangeTrackingUnsupportedException:
                logger.info("Mailbox does not support Graph change tracking; using receivedDateTime polling")
                since = cursor.watermark if cursor is not None and cursor.watermark else self._lookback_start()
                return await self._timestamp_page(
                    credential, OutlookCursor(link="", final=True, watermark=since, delta=False)
                )
        except RateLimitedException as e:
            return RateLimited(e.retry_after)

    def _lookback_start(self) -> datetime:
        return utc_now() - timedelta(days=self._settings.max_lookback_days)

    async def _delta_page(self, credential: Credential, cursor: OutlookCursor | None) -> ChangesPage:
        if cursor is None:
            data = await self._get(
                credential,
                f"{self._graph_url}/me/messages/delta",
                params={
                    "$select": MESSAGE_FIELDS,
                    "$filter": f"receivedDateTime ge {_graph_time(self._lookback_start())}",
                },
            )
            watermark = None
        else:
            data = await self._get(credential, cursor.link)
            watermark = cursor.watermark
        messages, watermark = self._parse_page(data, watermark)

        next_link = data.get("@odata.nextLink")
        if next_link:
            return ChangesPage(
                messages=messages,
                cursor=OutlookCursor(link=next_link, final=False, watermark=watermark),
                has_more=True,
            )
        delta_link = data.get("@odata.deltaLink")
        if not delta_link:
            raise MailSyncException("Graph delta response had neither nextLink nor deltaLink", "GRAPH_API_ERROR")
        return ChangesPage(
            messages=messages,
            cursor=OutlookCursor(link=delta_link, final=True, watermark=watermark),
        )

    async def _timestamp_page(self, credential: Credential, cursor: OutlookCursor) -> ChangesPage:
        """One page of messages received at or after the watermark.

        Polling cannot see deletions or flag changes on older mail; the
        boundary message is fetched again each round and upserted in place.
        """
        since = cursor.watermark or self._lookback_start()
        if cursor.link:
            data = await self._get(credential, cursor.link)
        else:
            data = await self._get(
                credential,
                f"{self._graph_url}/me/messages",
                params={
                    "$select": MESSAGE_FIELDS,
                    "$filter": f"receivedDateTime ge {_graph_time(since)}",
                    "$orderby": "receivedDateTime asc",
                    "$top": PAGE_SIZE,
                },
            )
        messages, watermark = self._parse_page(data, since)
        next_link = data.get("@odata.nextLink")
        if next_link:
            return ChangesPage(
                messages=messages,
                cursor=OutlookCursor(link=next_link, final=False, watermark=watermark, delta=False),
                has_more=True,
            )
        return ChangesPage(
            messages=messages,
            cursor=OutlookCursor(link="", final=True, watermark=watermark, delta=False),
        )

    def _parse_page(
        self, data: dict[str, Any], watermark: datetime | None
    ) -> tuple[list[RemoteMessage], datetime | None]:
        messages: list[RemoteMessage] = []
        for item in data.get("value", []):
            if "@removed" in item:
                messages.append(RemoteMessage(external_id=item["id"], deleted=True))
                continue
            message = self._parse_message(item)
            messages.append(message)
            if message.received_at and (watermark is None or message.received_at > watermark):
                watermark = message.received_at
        return messages, watermark

    @staticmethod
    def _parse_message(item: dict[str, Any]) -> RemoteMessage:
        """Parse Graph API message into RemoteMessage."""
        sender = (item.get("from") or {}).get("emailAddress") or {}
        received: datetime | None = parse_iso8601_utc(item.get("receivedDateTime"))
        return RemoteMessage(
            external_id=item["id"],
            thread_id=item.get("conversationId"),
            folder_ref=item.get("parentFolderId"),
            labels=list(item.get("categories") or []),
            subject=item.get("subject") or "",
            from_address=sender.get("address", ""),
            to_addresses=[
                r["emailAddress"]["address"]
                for r in item.get("toRecipients") or []
                if r.get("emailAddress", {}).get("address")
            ],
            received_at=received,
            is_read=bool(item.get("isRead", False)),
            is_starred=(item.get("flag") or {}).get("flagStatus") == "flagged",
            has_attachments=bool(item.get("hasAttachments", False)),
        )

    # Folders

    async def fetch_folders(self, credential: Credential) -> list[RemoteFolder]:
        folders: list[RemoteFolder] = []
        url: str | None = f"{self._graph_url}/me/mailFolders"
        params: dict[str, Any] | None = {"$top": 100}
        while url:
            data = await self._get(credential, url, params=params)
            for item in data.get("value", []):
                folders.append(
                    RemoteFolder(
                        remote_id=item["id"],
                        name=item.get("displayName", ""),
                        special_use_hint=item.get("wellKnownName"),
                        total_count=item.get("totalItemCount"),
                        unread_count=item.get("unreadItemCount"),
                    )
                )
            url = data.get("@odata.nextLink")
            params = None
        return folders
