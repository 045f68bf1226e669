"""IMAP email provider (iCloud, Yahoo, custom servers).

The cursor holds (UIDVALIDITY, highest seen UID) per mailbox. A sync round
visits every selectable mailbox, one mailbox per fetch_changes call; the
cursor is durable only after the last mailbox of the round.
"""

from __future__ import annotations

import email
import email.policy
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

import aioimaplib

from mailsync.application.dtos import ChangesPage, FetchResult
from mailsync.core.config import Settings
from mailsync.domain.entities import Credential, RemoteFolder, RemoteMessage
from mailsync.domain.enums import ProviderType
from mailsync.domain.exceptions import (
    AuthRevokedException,
    CursorInvalidatedException,
    MailSyncException,
    NetworkTransientException,
)
from mailsync.domain.value_objects import Cursor, ImapCursor, ImapFolderState
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import ensure_utc, utc_now
from mailsync.shared.utils.retry import with_retry

logger = get_logger(__name__)

FETCH_CHUNK = 100
FETCH_ITEMS = (
    "(UID FLAGS RFC822.SIZE INTERNALDATE "
    "BODY.PEEK[HEADER.FIELDS (FROM TO SUBJECT DATE MESSAGE-ID IN-REPLY-TO)])"
)
# RFC 6154 special-use attributes.
SPECIAL_USE_ATTRS = ("\\All", "\\Archive", "\\Drafts", "\\Flagged", "\\Junk", "\\Sent", "\\Trash")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_LIST_RE = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.+)$')
_STATUS_ITEM_RE = re.compile(r"(MESSAGES|UNSEEN|UIDVALIDITY|UIDNEXT)\s+(\d+)", re.IGNORECASE)
_UID_RE = re.compile(rb"\bUID\s+(\d+)")
_FLAGS_RE = re.compile(rb"\bFLAGS\s+\(([^)]*)\)")
_SIZE_RE = re.compile(rb"\bRFC822\.SIZE\s+(\d+)")
_INTERNALDATE_RE = re.compile(rb'\bINTERNALDATE\s+"([^"]+)"')

_NETWORK_ERRORS = (aioimaplib.Abort, aioimaplib.CommandTimeout, OSError, TimeoutError)


def imap_date(value: datetime) -> str:
    """IMAP SEARCH date (locale independent), e.g. 07-Mar-2025."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def quote_mailbox(name: str) -> str:
    return '"' + name.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return value


def _text(line: Any) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def parse_list_line(line: Any) -> tuple[str, list[str]] | None:
    """Parse one LIST response line into (mailbox name, attributes)."""
    match = _LIST_RE.match(_text(line).strip())
    if match is None:
        return None
    return _unquote(match.group("name")), match.group("flags").split()


def parse_status(lines: list[Any]) -> dict[str, int]:
    items: dict[str, int] = {}
    for line in lines:
        for key, value in _STATUS_ITEM_RE.findall(_text(line)):
            items[key.upper()] = int(value)
    return items


def parse_search(lines: list[Any]) -> list[int]:
    uids: list[int] = []
    for line in lines:
        text = _text(line).strip()
        if text.upper().startswith("SEARCH"):
            text = text[6:]
        uids.extend(int(token) for token in text.split() if token.isdigit())
    return uids


def _parse_internaldate(raw: bytes) -> datetime | None:
    try:
        return ensure_utc(datetime.strptime(raw.decode().strip(), "%d-%b-%Y %H:%M:%S %z"))
    except ValueError:
        return None


def parse_fetch(lines: list[Any]) -> list[dict[str, Any]]:
    """Split a UID FETCH response into per-message dicts.

    aioimaplib returns the FETCH line, the header literal as bytearray and
    a closing line that may carry trailing items (some servers put UID there).
    """
    records: list[dict[str, Any]] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        index += 1
        if not isinstance(line, bytes) or b" FETCH " not in line:
            continue
        meta = line
        literal = b""
        if index < len(lines) and isinstance(lines[index], bytearray):
            literal = bytes(lines[index])
            index += 1
            if index < len(lines) and isinstance(lines[index], bytes) and b" FETCH " not in lines[index]:
                meta += b" " + lines[index]
                index += 1
        uid = _UID_RE.search(meta)
        if uid is None:
            continue
        flags = _FLAGS_RE.search(meta)
        size = _SIZE_RE.search(meta)
        internal = _INTERNALDATE_RE.search(meta)
        records.append({
            "uid": int(uid.group(1)),
            "flags": flags.group(1).decode().split() if flags else [],
            "size": int(size.group(1)) if size else None,
            "internaldate": _parse_internaldate(internal.group(1)) if internal else None,
            "headers": literal,
        })
    return records


class IMAPProvider:
    """IMAP adapter over aioimaplib (one connection per call)."""

    provider_type = ProviderType.IMAP

    def __init__(self, settings: Settings, *, client_factory: Any = None) -> None:
        self._settings = settings
        self._client_factory = client_factory or self._default_client
        self._retry = with_retry(settings)

    @staticmethod
    def _default_client(host: str, port: int, use_ssl: bool, timeout: float) -> Any:
        if use_ssl:
            return aioimaplib.IMAP4_SSL(host=host, port=port, timeout=timeout)
        return aioimaplib.IMAP4(host=host, port=port, timeout=timeout)

    async def _connect(self, credential: Credential) -> Any:
        params = credential.params or {}
        host = params.get("imap_server") or params.get("host")
        if not host:
            raise MailSyncException("imap_server required in connection_params", "IMAP_CONFIG_ERROR")
        port = int(params.get("imap_port") or params.get("port") or 993)
        use_ssl = bool(params.get("use_ssl", True))
        username = credential.username
        if not username or not credential.access_token:
            raise AuthRevokedException("IMAP username and password are required")

        @self._retry
        async def _open() -> Any:
            try:
                client = self._client_factory(host, port, use_ssl, 30.0)
                await client.wait_hello_from_server()
                response = await client.login(username, credential.access_token)
            except _NETWORK_ERRORS as e:
                raise NetworkTransientException(f"IMAP connect failed: {type(e).__name__}") from e
            if response.result != "OK":
                text = " ".join(_text(line) for line in response.lines).upper()
                if "UNAVAILABLE" in text:
                    raise NetworkTransientException("IMAP server temporarily unavailable")
                raise AuthRevokedException("IMAP login rejected", vendor_error="authentication_failed")
            return client

        logger.debug("Connecting to IMAP server %s:%s", host, port)
        return await _open()

    @asynccontextmanager
    async def _session(self, credential: Credential) -> AsyncIterator[Any]:
        client = await self._connect(credential)
        try:
            yield client
        except _NETWORK_ERRORS as e:
            raise NetworkTransientException(f"IMAP command failed: {type(e).__name__}") from e
        finally:
            try:
                await client.logout()
            except _NETWORK_ERRORS as e:
                logger.debug("IMAP logout failed: %s", type(e).__name__)

    @staticmethod
    def _check(response: Any, command: str) -> Any:
        if response.result != "OK":
            raise MailSyncException(f"IMAP {command} failed", "IMAP_COMMAND_FAILED", {"command": command})
        return response

    async def _list_mailboxes(self, client: Any) -> list[tuple[str, list[str]]]:
        """Selectable mailboxes with attributes, INBOX first then by name."""
        response = self._check(await client.list('""', "*"), "LIST")
        mailboxes = []
        for line in response.lines:
            parsed = parse_list_line(line)
            if parsed is None:
                continue
            name, attrs = parsed
            if any(a.lower() in ("\\noselect", "\\nonexistent") for a in attrs):
                continue
            mailboxes.append((name, attrs))
        mailboxes.sort(key=lambda item: (item[0].upper() != "INBOX", item[0]))
        return mailboxes

    async def _status(self, client: Any, name: str) -> dict[str, int]:
        response = self._check(
            await client.status(quote_mailbox(name), "(MESSAGES UNSEEN UIDVALIDITY UIDNEXT)"),
            "STATUS",
        )
        return parse_status(response.lines)

    # Auth

    async def refresh(self, credential: Credential) -> Credential:
        """IMAP passwords do not expire."""
        return credential

    # Changes

    async def fetch_changes(self, credential: Credential, cursor: Cursor | None) -> FetchResult:
        if cursor is not None and not isinstance(cursor, ImapCursor):
            raise CursorInvalidatedException("Cursor does not belong to IMAP")
        async with self._session(credential) as client:
            names = [name for name, _ in await self._list_mailboxes(client)]
            if cursor is None or cursor.durable:
                known = cursor.folders if cursor else {}
                folders = {n: s for n, s in known.items() if n in names}
                pending = names
            else:
                folders = dict(cursor.folders)
                pending = [n for n in cursor.pending if n in names]
            if not pending:
                return ChangesPage(messages=[], cursor=ImapCursor(folders=folders))

            name, rest = pending[0], tuple(pending[1:])
            messages, state = await self._sync_mailbox(client, name, folders.get(name))
            folders[name] = state
            return ChangesPage(
                messages=messages,
                cursor=ImapCursor(folders=folders, pending=rest),
                has_more=bool(rest),
            )

    async def _sync_mailbox(
        self,
        client: Any,
        name: str,
        previous: ImapFolderState | None,
    ) -> tuple[list[RemoteMessage], ImapFolderState]:
        status = await self._status(client, name)
        uidvalidity = status.get("UIDVALIDITY", 0)
        uidnext = status.get("UIDNEXT", 0)
        self._check(await client.select(quote_mailbox(name)), "SELECT")
        cap = self._settings.full_sync_max_messages

        if previous is not None and previous.uidvalidity == uidvalidity:
            response = self._check(await client.uid_search(f"UID {previous.last_uid + 1}:*"), "UID SEARCH")
            # "n:*" always matches the highest UID, even when it is below n.
            uids = sorted(u for u in parse_search(response.lines) if u > previous.last_uid)[:cap]
            last_uid = max(uids, default=previous.last_uid)
        else:
            if previous is not None:
                logger.info("UIDVALIDITY changed for mailbox %s; resyncing lookback window", name)
            since = utc_now() - timedelta(days=self._settings.max_lookback_days)
            response = self._check(await client.uid_search(f"SINCE {imap_date(since)}"), "UID SEARCH")
            uids = sorted(parse_search(response.lines))[-cap:] if cap > 0 else []
            last_uid = max([*uids, uidnext - 1, 0])

        messages: list[RemoteMessage] = []
        for start in range(0, len(uids), FETCH_CHUNK):
            chunk = uids[start : start + FETCH_CHUNK]
            response = self._check(
                await client.uid("fetch", ",".join(str(u) for u in chunk), FETCH_ITEMS),
                "UID FETCH",
            )
            for record in parse_fetch(response.lines):
                messages.append(self._to_message(name, uidvalidity, record))
        return messages, ImapFolderState(uidvalidity=uidvalidity, last_uid=last_uid)

    @staticmethod
    def _to_message(mailbox: str, uidvalidity: int, record: dict[str, Any]) -> RemoteMessage:
        headers = email.message_from_bytes(record["headers"], policy=email.policy.default)
        flags = [f.lower() for f in record["flags"]]
        to_header = str(headers.get("To", "") or "")
        return RemoteMessage(
            external_id=f"{mailbox}/{uidvalidity}/{record['uid']}",
            thread_id=str(headers.get("In-Reply-To") or headers.get("Message-ID") or "") or None,
            folder_ref=mailbox,
            labels=[f for f in record["flags"] if not f.startswith("\\")],
            subject=str(headers.get("Subject", "") or ""),
            from_address=str(headers.get("From", "") or ""),
            to_addresses=[a.strip() for a in to_header.split(",") if a.strip()],
            received_at=record["internaldate"],
            is_read="\\seen" in flags,
            is_starred="\\flagged" in flags,
            size_bytes=record["size"],
        )

    # Folders

    async def fetch_folders(self, credential: Credential) -> list[RemoteFolder]:
        async with self._session(credential) as client:
            folders = []
            for name, attrs in await self._list_mailboxes(client):
                status = await self._status(client, name)
                hint = next((a for a in attrs if a in SPECIAL_USE_ATTRS), None)
                if hint is None and name.upper() == "INBOX":
                    hint = "inbox"
                folders.append(
                    RemoteFolder(
                        remote_id=name,
                        name=name,
                        special_use_hint=hint,
                        total_count=status.get("MESSAGES"),
                        unread_count=status.get("UNSEEN"),
                    )
                )
            return folders
