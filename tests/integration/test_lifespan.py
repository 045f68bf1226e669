"""Service wiring: memory backends end to end, Redis backends by selection."""

from unittest.mock import MagicMock

from mailsync.core.lifespan import build_event_bus, build_locks, build_queue, service_lifespan
from mailsync.domain.enums import ProviderType
from mailsync.infrastructure.messaging import (
    InMemoryEventBus,
    InMemoryJobQueue,
    InMemoryLockManager,
    RedisEventBus,
    RedisJobQueue,
    RedisLockManager,
)
from mailsync.infrastructure.persistence import database


async def test_memory_runtime_connects_and_schedules(settings_factory, tmp_path) -> None:
    """A connected mailbox is due on the first tick of a fresh service."""
    settings = settings_factory(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'service.db'}",
        database_create_tables=True,
    )

    async with service_lifespan(settings) as runtime:
        assert isinstance(runtime.queue, InMemoryJobQueue)
        assert isinstance(runtime.locks, InMemoryLockManager)
        assert isinstance(runtime.events, InMemoryEventBus)
        assert runtime.redis_enabled is False

        provider = await runtime.connections.connect_imap(
            tenant_id="t1",
            email_address="user@example.com",
            password="app-password",
            imap_server="imap.example.com",
        )
        assert provider.provider_type == ProviderType.IMAP
        assert await runtime.scheduler.tick() == 1
        stats = await runtime.scheduler.sync_statistics()
        assert stats.active_providers == 1
        assert stats.queue_depth == 1

    assert database.engine is None


def test_redis_backends_are_selected_by_settings(settings_factory) -> None:
    settings = settings_factory(
        queue_backend="redis",
        lock_backend="redis",
        event_backend="redis",
        sync_pass_timeout_seconds=120,
    )
    client = MagicMock()

    assert isinstance(build_queue(settings, client), RedisJobQueue)
    assert isinstance(build_locks(settings, client), RedisLockManager)
    assert isinstance(build_event_bus(settings, client), RedisEventBus)


def test_memory_backends_without_a_client(settings_factory) -> None:
    settings = settings_factory(queue_backend="redis")
    assert isinstance(build_queue(settings, None), InMemoryJobQueue)
