"""SqlSyncStore integration tests on a throwaway SQLite database."""

from datetime import timedelta

import pytest

from mailsync.application.dtos import Checkpoint, FailureCheckpoint, PassCommit
from mailsync.domain.entities import CredentialBundle, EncryptedSecret, NormalizedEmail, NormalizedFolder
from mailsync.domain.enums import ErrorClass, ProviderType
from mailsync.domain.exceptions import CursorConflictException, ResourceNotFoundException
from mailsync.domain.value_objects import GmailCursor
from mailsync.shared.utils.datetime import utc_now

BUNDLE = CredentialBundle(access=EncryptedSecret("aa" * 16, "bb" * 16), refresh=None)
INBOX = NormalizedFolder(remote_id="INBOX", name="INBOX", canonical_name="INBOX", special_use="inbox")
SENT = NormalizedFolder(remote_id="SENT", name="SENT", canonical_name="SENT", special_use="sent")


def _email(external_id: str, folder: str = "INBOX", *, is_read: bool = False, category: bool = False, **fields):
    values = {
        "external_id": external_id,
        "folder": folder,
        "category_folder": category,
        "labels": [folder],
        "thread_id": None,
        "subject": f"subject {external_id}",
        "from_address": "alice@example.com",
        "to_addresses": ["bob@example.com"],
        "received_at": utc_now(),
        "is_read": is_read,
        "is_starred": False,
        "has_attachments": False,
        "size_bytes": None,
    }
    values.update(fields)
    return NormalizedEmail(**values)


def _commit(provider_id, previous, new, emails=(), deleted=(), folders=(INBOX, SENT), priority=3):
    now = utc_now()
    return PassCommit(
        provider_id=provider_id,
        previous_cursor=previous,
        new_cursor=new,
        emails=list(emails),
        deleted_external_ids=list(deleted),
        folders=list(folders),
        checkpoint=Checkpoint(
            last_synced_at=now,
            avg_activity_rate=1.5,
            sync_priority=priority,
            next_sync_at=now + timedelta(minutes=30),
            messages_synced=len(emails),
        ),
    )


async def _provider(store, email_address="User@Example.com", tenant_id="t1"):
    return await store.create_provider(
        tenant_id=tenant_id,
        provider_type=ProviderType.GMAIL,
        email_address=email_address,
        credentials=BUNDLE,
    )


async def _counts(store, provider_id):
    return {f.canonical_name: (f.total_count, f.unread_count) for f in await store.list_folders(provider_id)}


async def test_create_provider_normalizes_and_reconnects(store) -> None:
    """Reconnecting the same mailbox reactivates the existing row."""
    created = await _provider(store)
    assert created.email_address == "user@example.com"
    assert created.next_sync_at is None
    assert created.credentials == BUNDLE

    await store.deactivate(created.id, "disconnected", wipe_credentials=True)
    wiped = await store.get_provider(created.id)
    assert wiped.is_active is False
    assert wiped.credentials is None

    again = await _provider(store, "user@example.com ")
    assert again.id == created.id
    assert again.is_active is True
    assert again.credentials == BUNDLE


async def test_commit_is_idempotent(store) -> None:
    """Replaying the same pass updates rows in place; no duplicates."""
    provider = await _provider(store)
    cursor = GmailCursor(history_id=10).encode()
    emails = [_email("m1"), _email("m2", is_read=True)]

    first = await store.commit_pass(_commit(provider.id, None, cursor, emails))
    second = await store.commit_pass(_commit(provider.id, cursor, cursor, emails))

    assert first.inserted == ["m1", "m2"]
    assert second.inserted == []
    assert second.updated == ["m1", "m2"]
    assert await store.count_emails(provider.id) == 2


async def test_commit_checkpoints_provider(store) -> None:
    provider = await _provider(store)
    await store.record_failure(
        FailureCheckpoint(
            provider_id=provider.id,
            error_class=ErrorClass.NETWORK_TRANSIENT,
            error_message="boom",
            error_streak=3,
            next_sync_at=utc_now(),
        )
    )
    cursor = GmailCursor(history_id=10).encode()

    await store.commit_pass(_commit(provider.id, None, cursor, [_email("m1")], priority=2))

    stored = await store.get_provider(provider.id)
    assert stored.cursor == cursor
    assert stored.error_streak == 0
    assert stored.last_error is None
    assert stored.sync_priority == 2
    assert stored.avg_activity_rate == 1.5
    assert stored.next_sync_at > stored.last_synced_at


async def test_stale_previous_cursor_is_refused(store) -> None:
    """Cursor compare-and-set: nothing from the refused pass lands."""
    provider = await _provider(store)
    current = GmailCursor(history_id=10).encode()
    await store.commit_pass(_commit(provider.id, None, current, [_email("m1")]))

    with pytest.raises(CursorConflictException):
        await store.commit_pass(
            _commit(provider.id, None, GmailCursor(history_id=5).encode(), [_email("m9")])
        )

    assert (await store.get_provider(provider.id)).cursor == current
    assert await store.get_email(provider.id, "m9") is None


async def test_commit_without_cursor_keeps_stored_cursor(store) -> None:
    provider = await _provider(store)
    current = GmailCursor(history_id=10).encode()
    await store.commit_pass(_commit(provider.id, None, current))

    result = await store.commit_pass(_commit(provider.id, current, None, [_email("m1")]))

    assert result.cursor_written is False
    assert (await store.get_provider(provider.id)).cursor == current


async def test_local_move_survives_vendor_update(store) -> None:
    """A locally moved message keeps its folder; vendor flags still apply."""
    provider = await _provider(store)
    await store.commit_pass(_commit(provider.id, None, None, [_email("m1")]))
    await store.move_email_local(provider.id, "m1", "ARCHIVE")

    await store.commit_pass(_commit(provider.id, None, None, [_email("m1", "INBOX", is_read=True)]))

    row = await store.get_email(provider.id, "m1")
    assert row.folder == "ARCHIVE"
    assert row.local_folder_override is True
    assert row.is_read is True


async def test_move_unknown_email_raises(store) -> None:
    provider = await _provider(store)
    with pytest.raises(ResourceNotFoundException):
        await store.move_email_local(provider.id, "nope", "ARCHIVE")


async def test_category_folder_applies_on_insert_only(store) -> None:
    provider = await _provider(store)
    await store.commit_pass(_commit(provider.id, None, None, [_email("new", "SOCIAL", category=True)]))
    await store.commit_pass(_commit(provider.id, None, None, [_email("old", "INBOX")]))

    await store.commit_pass(_commit(provider.id, None, None, [_email("old", "SOCIAL", category=True)]))

    assert (await store.get_email(provider.id, "new")).folder == "SOCIAL"
    assert (await store.get_email(provider.id, "old")).folder == "INBOX"


async def test_folder_counts_are_recomputed_from_rows(store) -> None:
    """Counts follow inserts, folder changes and deletions."""
    provider = await _provider(store)
    await store.commit_pass(
        _commit(
            provider.id,
            None,
            None,
            [_email("a"), _email("b", is_read=True), _email("c", "SENT", is_read=True)],
        )
    )
    assert await _counts(store, provider.id) == {"INBOX": (2, 1), "SENT": (1, 0)}

    await store.commit_pass(_commit(provider.id, None, None, [_email("b", "SENT", is_read=True)], deleted=["a"]))
    assert await _counts(store, provider.id) == {"INBOX": (0, 0), "SENT": (2, 0)}


async def test_folders_sharing_a_canonical_name_do_not_double_count(store) -> None:
    """Two vendor folders mapping to SENT carry the count once between them."""
    provider = await _provider(store)
    sent_items = NormalizedFolder(remote_id="Sent Items", name="Sent Items", canonical_name="SENT", special_use="sent")
    await store.commit_pass(
        _commit(provider.id, None, None, [_email("a", "SENT"), _email("b")], folders=[INBOX, sent_items, SENT])
    )
    by_remote = {f.remote_id: (f.total_count, f.unread_count) for f in await store.list_folders(provider.id)}
    assert by_remote == {"INBOX": (1, 1), "SENT": (1, 1), "Sent Items": (0, 0)}
    assert sum(total for total, _ in by_remote.values()) == 2


async def test_folders_missing_from_vendor_are_dropped(store) -> None:
    provider = await _provider(store)
    await store.commit_pass(_commit(provider.id, None, None))
    await store.commit_pass(_commit(provider.id, None, None, folders=[INBOX]))
    assert [f.remote_id for f in await store.list_folders(provider.id)] == ["INBOX"]


async def test_deleting_unknown_ids_reports_only_existing(store) -> None:
    provider = await _provider(store)
    await store.commit_pass(_commit(provider.id, None, None, [_email("a")]))

    result = await store.commit_pass(_commit(provider.id, None, None, deleted=["a", "ghost"]))

    assert result.deleted == ["a"]


async def test_bad_row_is_skipped_without_failing_the_pass(store) -> None:
    """A constraint violation rolls back that email alone."""
    provider = await _provider(store)

    result = await store.commit_pass(
        _commit(provider.id, None, None, [_email("dup"), _email("dup", "SENT"), _email("ok")])
    )

    assert result.inserted == ["dup", "ok"]
    assert result.skipped == ["dup"]
    assert await store.count_emails(provider.id) == 2


async def test_due_selection_order_and_filters(store) -> None:
    """Never-synced first, then oldest due; future and inactive excluded."""
    now = utc_now()
    fresh = await _provider(store, "fresh@example.com")
    overdue = await _provider(store, "overdue@example.com")
    later = await _provider(store, "later@example.com")
    revoked = await _provider(store, "revoked@example.com")
    for provider, next_at, deactivate in (
        (overdue, now - timedelta(minutes=5), False),
        (later, now + timedelta(minutes=5), False),
        (revoked, now - timedelta(hours=1), True),
    ):
        await store.record_failure(
            FailureCheckpoint(
                provider_id=provider.id,
                error_class=ErrorClass.AUTH_REVOKED if deactivate else ErrorClass.NETWORK_TRANSIENT,
                error_message="x" * 2000,
                error_streak=1,
                next_sync_at=next_at,
                deactivate=deactivate,
            )
        )

    due = await store.list_due_providers(now, limit=10)

    assert [p.id for p in due] == [fresh.id, overdue.id]
    assert await store.list_due_providers(now, limit=1) == due[:1]
    stored = await store.get_provider(revoked.id)
    assert stored.is_active is False
    assert len(stored.last_error) == 500
    assert stored.last_error_class == "auth_revoked"


async def test_delete_provider_removes_everything(store) -> None:
    provider = await _provider(store)
    await store.commit_pass(_commit(provider.id, None, None, [_email("a")]))

    assert await store.delete_provider(provider.id) is True

    assert await store.get_provider(provider.id) is None
    assert await store.count_emails(provider.id) == 0
    assert await store.list_folders(provider.id) == []
    assert await store.delete_provider(provider.id) is False


async def test_sync_statistics(store) -> None:
    synced = await _provider(store, "a@example.com")
    await _provider(store, "b@example.com")
    await store.commit_pass(_commit(synced.id, None, None, priority=1))

    stats = await store.sync_statistics()

    assert stats.active_providers == 2
    assert stats.never_synced == 1
    assert stats.synced_last_24h == 1
    assert stats.in_error == 0
    assert stats.priority_distribution[1] == 1
    assert stats.priority_distribution[3] == 1
    assert stats.avg_activity_rate == pytest.approx(0.75)
