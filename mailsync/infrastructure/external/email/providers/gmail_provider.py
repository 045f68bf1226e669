"""Gmail provider using Gmail API with batch and history support.

History-changelog vendor: the cursor is a history id. A full sync lists
messages inside the lookback window and starts the history chain from the
profile's current history id.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

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
from mailsync.domain.value_objects import Cursor, GmailCursor
from mailsync.infrastructure.external.email.oauth_drivers import (
    GoogleOAuthDriver,
    parse_retry_after,
)
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import from_timestamp_ms_utc, utc_now
from mailsync.shared.utils.retry import with_retry

logger = get_logger(__name__)

BATCH_SIZE = 100
LIST_PAGE_SIZE = 500
HISTORY_TYPES = ["messageAdded", "messageDeleted", "labelAdded", "labelRemoved"]
METADATA_HEADERS = ["From", "To", "Subject", "Date", "Message-ID"]
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded"})
# Labels that are flags or hidden categories, not folders.
NON_FOLDER_LABELS = frozenset({"UNREAD", "STARRED", "IMPORTANT", "CHAT", "CATEGORY_PERSONAL"})


def _error_reason(error: HttpError) -> str | None:
    details = getattr(error, "error_details", None)
    if isinstance(details, list):
        for item in details:
            if isinstance(item, dict) and item.get("reason"):
                return str(item["reason"])
    return None


def translate_http_error(error: HttpError) -> MailSyncException:
    """Map a Gmail HttpError to the sync error taxonomy."""
    status = int(error.resp.status)
    reason = _error_reason(error)
    if status == 429 or (status == 403 and reason in RATE_LIMIT_REASONS):
        headers = error.resp if hasattr(error.resp, "get") else {}
        return RateLimitedException(parse_retry_after(headers.get("retry-after")))
    if status == 401:
        return AuthExpiredException("Gmail rejected the access token")
    if status >= 500:
        return NetworkTransientException(f"Gmail API returned {status}")
    return MailSyncException(
        f"Gmail API request failed with status {status}",
        "GMAIL_API_ERROR",
        {"status": status, "reason": reason},
    )


class GmailProvider:
    """Gmail adapter (googleapiclient calls run in worker threads)."""

    provider_type = ProviderType.GMAIL

    def __init__(
        self,
        settings: Settings,
        oauth_driver: GoogleOAuthDriver,
        *,
        service_factory: Callable[[Credential], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._oauth = oauth_driver
        self._service_factory = service_factory or self._build_service
        self._retry = with_retry(settings)

    @staticmethod
    def _build_service(credential: Credential) -> Any:
        creds = Credentials(token=credential.access_token)
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    async def _service(self, credential: Credential) -> Any:
        return await asyncio.to_thread(self._service_factory, credential)

    async def _execute(self, request: Any) -> dict[str, Any]:
        """Run one API request off the event loop, retrying transient failures."""

        @self._retry
        async def _run() -> dict[str, Any]:
            try:
                return await asyncio.to_thread(request.execute)
            except HttpError as e:
                raise translate_http_error(e) from e
            except (OSError, TimeoutError) as e:
                raise NetworkTransientException(f"Gmail API unreachable: {type(e).__name__}") from e

        return await _run()

    # Auth

    async def refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise AuthRevokedException("No Gmail refresh token", vendor_error="missing_refresh_token")
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
        if cursor is not None and not isinstance(cursor, GmailCursor):
            raise CursorInvalidatedException("Cursor does not belong to Gmail")
        service = await self._service(credential)
        try:
            if cursor is None:
                return await self._full_sync(service)
            return await self._history_page(service, cursor)
        except RateLimitedException as e:
            return RateLimited(e.retry_after)

    async def _full_sync(self, service: Any) -> ChangesPage:
        """Bounded initial sync: messages in the lookback window, newest first."""
        profile = await self._execute(service.users().getProfile(userId="me"))
        history_id = profile.get("historyId")
        if not history_id:
            raise MailSyncException("Gmail profile did not return historyId", "GMAIL_API_ERROR")

        since = utc_now() - timedelta(days=self._settings.max_lookback_days)
        cap = self._settings.full_sync_max_messages
        ids: list[str] = []
        page_token: str | None = None
        while len(ids) < cap:
            result = await self._execute(
                service.users().messages().list(
                    userId="me",
                    q=f"after:{int(since.timestamp())}",
                    maxResults=min(LIST_PAGE_SIZE, cap - len(ids)),
                    pageToken=page_token,
                    includeSpamTrash=True,
                )
            )
            ids.extend(m["id"] for m in result.get("messages", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break

        messages = await self._fetch_metadata(service, ids[:cap])
        logger.info("Gmail full sync fetched %d messages", len(messages))
        return ChangesPage(
            messages=messages,
            cursor=GmailCursor(history_id=int(history_id)),
            has_more=False,
        )

    async def _history_page(self, service: Any, cursor: GmailCursor) -> ChangesPage:
        """One page of history records after the cursor."""
        start = cursor.start_history_id if cursor.page_token else cursor.history_id
        params: dict[str, Any] = {
            "userId": "me",
            "startHistoryId": str(start),
            "historyTypes": HISTORY_TYPES,
            "maxResults": LIST_PAGE_SIZE,
        }
        if cursor.page_token:
            params["pageToken"] = cursor.page_token
        try:
            result = await self._execute(service.users().history().list(**params))
        except MailSyncException as e:
            cause = e.__cause__
            if isinstance(cause, HttpError) and int(cause.resp.status) in (404, 410):
                raise CursorInvalidatedException(
                    f"Gmail history id {start} has expired"
                ) from cause
            raise

        # Last event per message wins, in the order records were returned.
        latest: dict[str, str] = {}
        for record in result.get("history", []):
            for key, kind in (
                ("messagesAdded", "changed"),
                ("labelsAdded", "changed"),
                ("labelsRemoved", "changed"),
                ("messagesDeleted", "deleted"),
            ):
                for entry in record.get(key, []):
                    message_id = entry.get("message", {}).get("id")
                    if message_id:
                        latest.pop(message_id, None)
                        latest[message_id] = kind

        changed = [mid for mid, kind in latest.items() if kind == "changed"]
        fetched = {m.external_id: m for m in await self._fetch_metadata(service, changed)}
        messages: list[RemoteMessage] = []
        for message_id, kind in latest.items():
            if kind == "changed" and message_id in fetched:
                messages.append(fetched[message_id])
            else:
                # Deleted, or gone before we could read it.
                messages.append(RemoteMessage(external_id=message_id, deleted=True))

        new_history_id = max(int(result.get("historyId", cursor.history_id)), cursor.history_id)
        next_token = result.get("nextPageToken")
        if next_token:
            return ChangesPage(
                messages=messages,
                cursor=GmailCursor(history_id=new_history_id, page_token=next_token, start_history_id=start),
                has_more=True,
            )
        return ChangesPage(messages=messages, cursor=GmailCursor(history_id=new_history_id))

    async def _fetch_metadata(self, service: Any, message_ids: list[str]) -> list[RemoteMessage]:
        """Fetch message metadata via batch requests.

        Messages that no longer exist (404) are omitted; any other item
        failure fails the fetch so the cursor does not skip it.
        """
        messages: list[RemoteMessage] = []
        for batch_start in range(0, len(message_ids), BATCH_SIZE):
            batch_ids = message_ids[batch_start : batch_start + BATCH_SIZE]
            batch_results: dict[str, dict[str, Any]] = {}
            batch_errors: list[HttpError] = []

            def add_callback(msg_id: str) -> Callable[[str, dict[str, Any], Exception | None], None]:
                def cb(request_id: str, response: dict[str, Any], exception: Exception | None) -> None:
                    if exception is None:
                        batch_results[msg_id] = response
                    elif isinstance(exception, HttpError) and int(exception.resp.status) == 404:
                        logger.debug("Gmail message %s disappeared before fetch", msg_id)
                    elif isinstance(exception, HttpError):
                        batch_errors.append(exception)
                    else:
                        raise exception

                return cb

            batch = service.new_batch_http_request()
            for msg_id in batch_ids:
                batch.add(
                    service.users().messages().get(
                        userId="me",
                        id=msg_id,
                        format="metadata",
                        metadataHeaders=METADATA_HEADERS,
                    ),
                    callback=add_callback(msg_id),
                )
            await self._execute(batch)
            if batch_errors:
                raise translate_http_error(batch_errors[0]) from batch_errors[0]
            for msg_id in batch_ids:
                if msg_id in batch_results:
                    messages.append(self._parse_message(batch_results[msg_id], msg_id))
        return messages

    @staticmethod
    def _parse_message(msg: dict[str, Any], msg_id: str) -> RemoteMessage:
        """Parse Gmail API message metadata into RemoteMessage."""
        payload = msg.get("payload", {})
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
        label_ids = list(msg.get("labelIds", []))
        internal_date = msg.get("internalDate")
        return RemoteMessage(
            external_id=msg.get("id", msg_id),
            thread_id=msg.get("threadId"),
            labels=label_ids,
            subject=headers.get("subject", ""),
            from_address=headers.get("from", ""),
            to_addresses=[a.strip() for a in headers.get("to", "").split(",") if a.strip()],
            received_at=from_timestamp_ms_utc(int(internal_date)) if internal_date else None,
            is_read="UNREAD" not in label_ids,
            is_starred="STARRED" in label_ids,
            has_attachments=any(p.get("filename") for p in payload.get("parts", [])),
            size_bytes=msg.get("sizeEstimate"),
        )

    # Folders

    async def fetch_folders(self, credential: Credential) -> list[RemoteFolder]:
        service = await self._service(credential)
        result = await self._execute(service.users().labels().list(userId="me"))
        folders = []
        for label in result.get("labels", []):
            label_id = label.get("id", "")
            if label_id in NON_FOLDER_LABELS:
                continue
            folders.append(
                RemoteFolder(
                    remote_id=label_id,
                    name=label.get("name", label_id),
                    special_use_hint=label_id if label.get("type") == "system" else None,
                    total_count=label.get("messagesTotal"),
                    unread_count=label.get("messagesUnread"),
                )
            )
        return folders
