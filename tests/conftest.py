"""Pytest configuration and fixtures for mailsync.

Env is set before any mailsync import so get_settings() validates. Store
fixtures use a throwaway SQLite file via aiosqlite; everything else runs
against in-memory fakes and the memory backends.
"""

import base64
import os
from dataclasses import replace
from datetime import timedelta

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./mailsync-test.db")
os.environ.setdefault("CREDENTIAL_ENCRYPTION_KEY", base64.b64encode(b"k" * 32).decode())

from mailsync.application.dtos import CommitResult  # noqa: E402
from mailsync.application.services import Normalizer  # noqa: E402
from mailsync.application.use_cases.sync import SyncPassUseCase  # noqa: E402
from mailsync.core.config import Settings, get_settings  # noqa: E402
from mailsync.domain.entities import CredentialBundle, ProviderSnapshot, RemoteFolder  # noqa: E402
from mailsync.domain.enums import ProviderType  # noqa: E402
from mailsync.infrastructure.external.email import (  # noqa: E402
    CredentialVault,
    ProviderAdapterRegistry,
    SecretCipher,
)
from mailsync.infrastructure.messaging import (  # noqa: E402
    InMemoryEventBus,
    InMemoryJobQueue,
    InMemoryLockManager,
)
from mailsync.infrastructure.persistence.database import (  # noqa: E402
    build_engine,
    build_session_factory,
    init_models,
)
from mailsync.infrastructure.persistence.sync_store import SqlSyncStore  # noqa: E402
from mailsync.shared.utils.datetime import utc_now  # noqa: E402

TEST_KEY = b"k" * 32


def make_settings(**overrides) -> Settings:
    """Settings with fast retries; keyword overrides win over env."""
    values = {
        "database_url": os.environ["DATABASE_URL"],
        "network_retry_attempts": 2,
        "network_retry_initial_wait_seconds": 0.0,
        "network_retry_max_wait_seconds": 0.0,
        "heartbeat_interval_seconds": 0.05,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Drop cached settings between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
async def store(tmp_path):
    """SqlSyncStore over a fresh SQLite database file."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'mailsync.db'}")
    await init_models(engine)
    yield SqlSyncStore(build_session_factory(engine))
    await engine.dispose()


def make_snapshot(**overrides) -> ProviderSnapshot:
    values = {
        "id": "p1",
        "tenant_id": "t1",
        "provider_type": ProviderType.GMAIL,
        "email_address": "user@example.com",
        "credentials": None,
        "token_expires_at": None,
        "connection_params": {},
        "sync_priority": 3,
        "error_streak": 0,
        "avg_activity_rate": 0.0,
        "last_synced_at": None,
        "next_sync_at": None,
        "cursor": None,
        "is_active": True,
    }
    values.update(overrides)
    return ProviderSnapshot(**values)


@pytest.fixture
def snapshot_factory():
    return make_snapshot


class FakeStore:
    """In-memory store recording every write the sync pass makes."""

    def __init__(self, *providers: ProviderSnapshot) -> None:
        self.providers = {p.id: p for p in providers}
        self.commits = []
        self.failures = []
        self.credentials = []
        self.deactivated = []
        self.deleted = []
        self.due: list[ProviderSnapshot] = []

    async def get_provider(self, provider_id):
        return self.providers.get(provider_id)

    async def list_due_providers(self, now, limit):
        return self.due[:limit]

    async def commit_pass(self, commit):
        self.commits.append(commit)
        provider = self.providers[commit.provider_id]
        if commit.new_cursor is not None:
            self.providers[commit.provider_id] = replace(provider, cursor=commit.new_cursor)
        return CommitResult(
            inserted=[e.external_id for e in commit.emails],
            deleted=list(commit.deleted_external_ids),
            cursor_written=commit.new_cursor is not None,
        )

    async def record_failure(self, failure):
        self.failures.append(failure)
        provider = self.providers[failure.provider_id]
        self.providers[failure.provider_id] = replace(
            provider,
            error_streak=failure.error_streak,
            next_sync_at=failure.next_sync_at,
            is_active=provider.is_active and not failure.deactivate,
        )

    async def replace_credentials(self, provider_id, credentials, token_expires_at):
        self.credentials.append((provider_id, credentials, token_expires_at))
        provider = self.providers[provider_id]
        self.providers[provider_id] = replace(
            provider, credentials=credentials, token_expires_at=token_expires_at
        )

    async def deactivate(self, provider_id, reason, *, wipe_credentials=False):
        self.deactivated.append((provider_id, reason, wipe_credentials))

    async def create_provider(self, **kwargs):
        snapshot = make_snapshot(
            id=f"p{len(self.providers) + 1}",
            tenant_id=kwargs["tenant_id"],
            provider_type=kwargs["provider_type"],
            email_address=kwargs["email_address"],
            credentials=kwargs["credentials"],
            token_expires_at=kwargs.get("token_expires_at"),
            connection_params=kwargs.get("connection_params") or {},
        )
        self.providers[snapshot.id] = snapshot
        return snapshot

    async def delete_provider(self, provider_id):
        self.deleted.append(provider_id)
        return self.providers.pop(provider_id, None) is not None


class ScriptedAdapter:
    """Adapter that replays scripted fetch_changes results.

    Each script item is a ChangesPage, a RateLimited, or an exception to
    raise. calls records the cursor passed to every fetch_changes call.
    """

    def __init__(self, script=None, folders=None, refreshed=None) -> None:
        self.script = list(script or [])
        self.folders = folders if folders is not None else [RemoteFolder("INBOX", "INBOX", "inbox")]
        self.refreshed = refreshed
        self.calls = []
        self.refresh_calls = 0

    async def refresh(self, credential):
        self.refresh_calls += 1
        if isinstance(self.refreshed, Exception):
            raise self.refreshed
        return self.refreshed or credential

    async def fetch_changes(self, credential, cursor):
        self.calls.append(cursor)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_folders(self, credential):
        return list(self.folders)


@pytest.fixture
def fake_store_factory():
    return FakeStore


@pytest.fixture
def adapter_factory():
    return ScriptedAdapter


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher(TEST_KEY)


@pytest.fixture
def sealed_snapshot(cipher):
    """Build a snapshot carrying encrypted credentials."""

    def _make(access="access-token", refresh="refresh-token", expires_in=timedelta(hours=1), **overrides):
        bundle = CredentialBundle(
            access=cipher.encrypt(access),
            refresh=cipher.encrypt(refresh) if refresh else None,
        )
        expires_at = utc_now() + expires_in if expires_in is not None else None
        return make_snapshot(credentials=bundle, token_expires_at=expires_at, **overrides)

    return _make


@pytest.fixture
def sync_harness(settings, cipher):
    """Build a SyncPassUseCase over a FakeStore, one adapter and memory backends."""

    def _build(provider: ProviderSnapshot, adapter: ScriptedAdapter, **setting_overrides):
        run_settings = make_settings(**setting_overrides) if setting_overrides else settings
        store = FakeStore(provider)
        registry = ProviderAdapterRegistry({provider.provider_type: adapter})
        vault = CredentialVault(store, registry, run_settings, cipher=cipher)
        locks = InMemoryLockManager()
        events = InMemoryEventBus(heartbeat_interval=60)
        published = []
        original_publish = events.publish

        async def _record(event):
            published.append(event)
            await original_publish(event)

        events.publish = _record
        use_case = SyncPassUseCase(
            store=store,
            vault=vault,
            adapters=registry,
            locks=locks,
            events=events,
            normalizer=Normalizer(),
            settings=run_settings,
        )
        return use_case, store, locks, published

    return _build


@pytest.fixture
def memory_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()
