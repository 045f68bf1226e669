"""Vendor cursor value objects.

Each vendor owns its own cursor encoding. The stored form is a compact JSON
string tagged with the vendor, so the worker can decode whatever the store
hands back without knowing the vendor upfront. Cursors are immutable;
paging produces a new cursor.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mailsync.domain.enums import ProviderType


def _dump(kind: str, body: dict[str, Any]) -> str:
    return json.dumps({"v": kind, **body}, separators=(",", ":"), sort_keys=True)


@dataclass(frozen=True)
class GmailCursor:
    """History-changelog cursor: a numeric history id.

    page_token is set only while a multi-page history listing is in progress;
    such a cursor is intermediate and never persisted.
    """

    history_id: int
    page_token: str | None = None
    start_history_id: int | None = None

    def __post_init__(self) -> None:
        if self.history_id < 0:
            raise ValueError("history_id must be non-negative")

    @property
    def durable(self) -> bool:
        return self.page_token is None

    def encode(self) -> str:
        body: dict[str, Any] = {"h": str(self.history_id)}
        if self.page_token is not None:
            body["p"] = self.page_token
            body["s"] = str(self.start_history_id)
        return _dump(ProviderType.GMAIL.value, body)

    def is_behind(self, other: GmailCursor) -> bool:
        return self.history_id < other.history_id


@dataclass(frozen=True)
class OutlookCursor:
    """Paginated delta-link cursor.

    link is an @odata.nextLink while paging (final=False) and an
    @odata.deltaLink once the round is complete (final=True). watermark is
    the newest receivedDateTime observed and gives the cursor an ordering.

    delta=False marks a mailbox that rejects change tracking: rounds query
    receivedDateTime ge watermark instead, and a final cursor has no link.
    """

    link: str
    final: bool = True
    watermark: datetime | None = None
    delta: bool = True

    @property
    def durable(self) -> bool:
        return self.final

    def encode(self) -> str:
        body: dict[str, Any] = {"l": self.link, "f": self.final}
        if self.watermark is not None:
            body["w"] = self.watermark.isoformat()
        if not self.delta:
            body["d"] = False
        return _dump(ProviderType.OUTLOOK.value, body)

    def is_behind(self, other: OutlookCursor) -> bool:
        if self.watermark is None or other.watermark is None:
            return self.watermark is None and other.watermark is not None
        return self.watermark < other.watermark


@dataclass(frozen=True)
class ImapFolderState:
    """Highest seen UID of one mailbox under one UIDVALIDITY epoch."""

    uidvalidity: int
    last_uid: int


@dataclass(frozen=True)
class ImapCursor:
    """Composite IMAP cursor: per-folder (uidvalidity, last_uid).

    pending lists folders not yet visited in the current pass; the cursor is
    durable only when pending is empty.
    """

    folders: dict[str, ImapFolderState] = field(default_factory=dict)
    pending: tuple[str, ...] = ()

    @property
    def durable(self) -> bool:
        return not self.pending

    def encode(self) -> str:
        body: dict[str, Any] = {
            "f": {
                name: [state.uidvalidity, state.last_uid]
                for name, state in sorted(self.folders.items())
            }
        }
        if self.pending:
            body["p"] = list(self.pending)
        return _dump(ProviderType.IMAP.value, body)

    def is_behind(self, other: ImapCursor) -> bool:
        """True if any folder shared under the same epoch has a lower UID."""
        for name, state in self.folders.items():
            theirs = other.folders.get(name)
            if theirs is None or theirs.uidvalidity != state.uidvalidity:
                continue
            if state.last_uid < theirs.last_uid:
                return True
        return False

    def with_folder(self, name: str, state: ImapFolderState) -> ImapCursor:
        folders = dict(self.folders)
        folders[name] = state
        return ImapCursor(folders=folders, pending=self.pending)


Cursor = GmailCursor | OutlookCursor | ImapCursor


def decode_cursor(provider_type: ProviderType, raw: str | None) -> Cursor | None:
    """Decode a stored cursor string for the given vendor.

    Returns None for an empty cursor. Raises ValueError when the payload is
    malformed or belongs to another vendor.
    """
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError("Cursor is not valid JSON") from e
    if not isinstance(data, dict) or data.get("v") != provider_type.value:
        raise ValueError(f"Cursor does not belong to {provider_type.value}")
    try:
        return _decode_body(provider_type, data)
    except (KeyError, TypeError, AttributeError, IndexError) as e:
        raise ValueError(f"Cursor for {provider_type.value} is malformed: {e!r}") from e


def _decode_body(provider_type: ProviderType, data: dict[str, Any]) -> Cursor:
    if provider_type == ProviderType.GMAIL:
        page_token = data.get("p")
        return GmailCursor(
            history_id=int(data["h"]),
            page_token=page_token,
            start_history_id=int(data["s"]) if page_token else None,
        )
    if provider_type == ProviderType.OUTLOOK:
        watermark = data.get("w")
        return OutlookCursor(
            link=data["l"],
            final=bool(data.get("f", True)),
            watermark=datetime.fromisoformat(watermark) if watermark else None,
            delta=bool(data.get("d", True)),
        )
    raw_folders = data.get("f", {})
    pending = data.get("p", [])
    if not isinstance(raw_folders, dict) or not isinstance(pending, list):
        raise TypeError("IMAP cursor needs a folder map and a pending list")
    folders = {
        name: ImapFolderState(uidvalidity=int(pair[0]), last_uid=int(pair[1]))
        for name, pair in raw_folders.items()
    }
    return ImapCursor(folders=folders, pending=tuple(pending))
