"""Folder and message normalization.

Maps vendor folder vocabularies to the canonical set and turns RemoteMessage
into NormalizedEmail. Folder resolution order:

1. vendor special-use flag (authoritative)
2. category table (e.g. CATEGORY_SOCIAL -> SOCIAL)
3. locale-aware name table
4. raw name uppercased (custom folder)

Category labels are resolved through a replaceable table. The resulting
folder is marked category-derived so the store only applies it on insert.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from mailsync.domain.entities import (
    NormalizedEmail,
    NormalizedFolder,
    RemoteFolder,
    RemoteMessage,
)
from mailsync.domain.enums import SPECIAL_USE_FOLDERS, CanonicalFolder
from mailsync.domain.exceptions import DataIntegrityException
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


# IMAP RFC 6154 attributes, Graph wellKnownName values and Gmail system labels.
SPECIAL_USE_HINTS: dict[str, CanonicalFolder] = {
    "inbox": CanonicalFolder.INBOX,
    "sent": CanonicalFolder.SENT,
    "sentitems": CanonicalFolder.SENT,
    "drafts": CanonicalFolder.DRAFTS,
    "draft": CanonicalFolder.DRAFTS,
    "trash": CanonicalFolder.TRASH,
    "deleteditems": CanonicalFolder.TRASH,
    "junk": CanonicalFolder.SPAM,
    "junkemail": CanonicalFolder.SPAM,
    "spam": CanonicalFolder.SPAM,
    "all": CanonicalFolder.ARCHIVE,
    "archive": CanonicalFolder.ARCHIVE,
    "outbox": CanonicalFolder.OUTBOX,
}

# Lowercased display names in the locales we have seen (en, it, de).
LOCALE_FOLDER_NAMES: dict[str, CanonicalFolder] = {
    "inbox": CanonicalFolder.INBOX,
    "posta in arrivo": CanonicalFolder.INBOX,
    "posteingang": CanonicalFolder.INBOX,
    "sent": CanonicalFolder.SENT,
    "sent items": CanonicalFolder.SENT,
    "sent mail": CanonicalFolder.SENT,
    "sentitems": CanonicalFolder.SENT,
    "posta inviata": CanonicalFolder.SENT,
    "inviata": CanonicalFolder.SENT,
    "elementi inviati": CanonicalFolder.SENT,
    "gesendet": CanonicalFolder.SENT,
    "drafts": CanonicalFolder.DRAFTS,
    "draft": CanonicalFolder.DRAFTS,
    "bozze": CanonicalFolder.DRAFTS,
    "entwürfe": CanonicalFolder.DRAFTS,
    "trash": CanonicalFolder.TRASH,
    "deleted": CanonicalFolder.TRASH,
    "deleted items": CanonicalFolder.TRASH,
    "deleteditems": CanonicalFolder.TRASH,
    "posta eliminata": CanonicalFolder.TRASH,
    "elementi eliminati": CanonicalFolder.TRASH,
    "cestino": CanonicalFolder.TRASH,
    "eliminata": CanonicalFolder.TRASH,
    "papierkorb": CanonicalFolder.TRASH,
    "junk": CanonicalFolder.SPAM,
    "junk email": CanonicalFolder.SPAM,
    "junk e-mail": CanonicalFolder.SPAM,
    "spam": CanonicalFolder.SPAM,
    "posta indesiderata": CanonicalFolder.SPAM,
    "archive": CanonicalFolder.ARCHIVE,
    "all mail": CanonicalFolder.ARCHIVE,
    "archivia": CanonicalFolder.ARCHIVE,
    "archivio": CanonicalFolder.ARCHIVE,
    "archiv": CanonicalFolder.ARCHIVE,
    "outbox": CanonicalFolder.OUTBOX,
    "posta in uscita": CanonicalFolder.OUTBOX,
    "postausgang": CanonicalFolder.OUTBOX,
}

# Gmail system labels, highest precedence first. Category labels slot in
# between DRAFT and INBOX.
_LABEL_PRECEDENCE_BEFORE_CATEGORY: tuple[tuple[str, CanonicalFolder], ...] = (
    ("TRASH", CanonicalFolder.TRASH),
    ("SPAM", CanonicalFolder.SPAM),
    ("SENT", CanonicalFolder.SENT),
    ("DRAFT", CanonicalFolder.DRAFTS),
    ("DRAFTS", CanonicalFolder.DRAFTS),
)


@dataclass(frozen=True)
class CategoryRule:
    """How a category label is resolved: to a folder, or kept as a label only."""

    label: str
    folder: str | None


DEFAULT_CATEGORY_TABLE: tuple[CategoryRule, ...] = (
    CategoryRule("CATEGORY_PERSONAL", CanonicalFolder.INBOX.value),
    CategoryRule("CATEGORY_SOCIAL", CanonicalFolder.SOCIAL.value),
    CategoryRule("CATEGORY_PROMOTIONS", CanonicalFolder.PROMOTIONS.value),
    CategoryRule("CATEGORY_UPDATES", CanonicalFolder.UPDATES.value),
    CategoryRule("CATEGORY_FORUMS", CanonicalFolder.FORUMS.value),
)

_HIERARCHY_SEPARATORS = ("/", ".")


def _leaf_name(raw_name: str) -> str:
    """Last segment of a hierarchical name ("[Gmail]/Sent Mail" -> "Sent Mail")."""
    leaf = raw_name
    for sep in _HIERARCHY_SEPARATORS:
        if sep in leaf:
            leaf = leaf.rsplit(sep, 1)[-1]
    return leaf


def _hint_key(hint: str) -> str:
    return hint.strip().lstrip("\\").replace(" ", "").lower()


class Normalizer:
    """Vendor-to-canonical mapping. Pure and deterministic."""

    def __init__(self, category_table: Iterable[CategoryRule] = DEFAULT_CATEGORY_TABLE) -> None:
        self._categories: dict[str, str | None] = {
            rule.label.upper(): rule.folder for rule in category_table
        }

    def normalize_folder_name(self, raw_name: str, special_use: str | None = None) -> str:
        """Canonical folder for a (raw name, special-use hint) pair."""
        if special_use:
            mapped = SPECIAL_USE_HINTS.get(_hint_key(special_use))
            if mapped is not None:
                return mapped.value
        name = raw_name.strip()
        category_folder = self._categories.get(name.upper())
        if category_folder is not None:
            return category_folder
        for candidate in (name, _leaf_name(name)):
            mapped = LOCALE_FOLDER_NAMES.get(candidate.lower())
            if mapped is not None:
                return mapped.value
        return name.upper()

    @staticmethod
    def special_use_tag(canonical_name: str) -> str | None:
        """Folder.special_use for a canonical name; None for custom folders."""
        try:
            folder = CanonicalFolder(canonical_name)
        except ValueError:
            return None
        return folder.value if folder in SPECIAL_USE_FOLDERS else None

    def folder_from_labels(self, labels: Iterable[str]) -> tuple[str, bool]:
        """Resolve a label-based vendor's folder. Returns (folder, category_derived)."""
        label_set = {label.upper() for label in labels}
        for label, folder in _LABEL_PRECEDENCE_BEFORE_CATEGORY:
            if label in label_set:
                return folder.value, False
        for label in sorted(label_set):
            category_folder = self._categories.get(label)
            if category_folder is not None:
                return category_folder, True
        return CanonicalFolder.INBOX.value, False

    def normalize_folders(self, folders: Iterable[RemoteFolder]) -> list[NormalizedFolder]:
        normalized = []
        for folder in folders:
            canonical = self.normalize_folder_name(folder.name, folder.special_use_hint)
            normalized.append(
                NormalizedFolder(
                    remote_id=folder.remote_id,
                    name=folder.name,
                    canonical_name=canonical,
                    special_use=self.special_use_tag(canonical),
                )
            )
        return normalized

    def normalize_message(
        self,
        message: RemoteMessage,
        folder_map: Mapping[str, str] | None = None,
    ) -> NormalizedEmail:
        """Canonicalize one message.

        folder_map maps vendor folder refs to canonical names. Raises
        DataIntegrityException when the message has no usable identity.
        """
        external_id = (message.external_id or "").strip()
        if not external_id:
            raise DataIntegrityException("Message has no external id")

        category_derived = False
        if message.folder_ref is not None:
            if folder_map and message.folder_ref in folder_map:
                folder = folder_map[message.folder_ref]
            else:
                folder = self.normalize_folder_name(message.folder_ref)
        else:
            folder, category_derived = self.folder_from_labels(message.labels)

        return NormalizedEmail(
            external_id=external_id,
            folder=folder,
            category_folder=category_derived,
            labels=sorted(set(message.labels)),
            thread_id=message.thread_id,
            subject=message.subject or "",
            from_address=message.from_address or "",
            to_addresses=[a for a in message.to_addresses if a],
            received_at=message.received_at,
            is_read=message.is_read,
            is_starred=message.is_starred,
            has_attachments=message.has_attachments,
            size_bytes=message.size_bytes,
        )

    def normalize_batch(
        self,
        messages: Iterable[RemoteMessage],
        folder_map: Mapping[str, str] | None = None,
    ) -> tuple[list[NormalizedEmail], list[str], list[str]]:
        """Normalize a pass worth of messages.

        Returns (emails, deleted_external_ids, skipped). Later occurrences of
        the same external id win, so pages apply in the order received.
        """
        by_id: dict[str, NormalizedEmail] = {}
        deleted: dict[str, None] = {}
        skipped: list[str] = []
        for message in messages:
            if message.deleted:
                external_id = (message.external_id or "").strip()
                if external_id:
                    by_id.pop(external_id, None)
                    deleted[external_id] = None
                continue
            try:
                email = self.normalize_message(message, folder_map)
            except DataIntegrityException as e:
                logger.warning("Skipping message during normalization: %s", e.message)
                skipped.append(message.external_id or "")
                continue
            deleted.pop(email.external_id, None)
            by_id[email.external_id] = email
        return list(by_id.values()), list(deleted), skipped
