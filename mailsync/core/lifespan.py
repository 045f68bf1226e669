"""Service lifespan: build every component at startup, close them on shutdown.

Single place for wiring (composition root). Backends are picked from
settings; the scheduler and workers receive their ports by injection.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import redis.asyncio as redis

from mailsync.application.interfaces import IEventBus, IJobQueue, IProviderLockManager
from mailsync.application.services import Normalizer, ProviderConnections, Scheduler, WorkerPool
from mailsync.application.use_cases.sync import SyncPassUseCase
from mailsync.core.config import Settings, get_settings
from mailsync.infrastructure.external.email import CredentialVault, ProviderAdapterRegistry
from mailsync.infrastructure.messaging import (
    InMemoryEventBus,
    InMemoryJobQueue,
    InMemoryLockManager,
    RedisEventBus,
    RedisJobQueue,
    RedisLockManager,
    connect_redis,
)
from mailsync.infrastructure.persistence import database
from mailsync.infrastructure.persistence.sync_store import SqlSyncStore
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceRuntime:
    """Everything a running sync service holds."""

    settings: Settings
    store: SqlSyncStore
    adapters: ProviderAdapterRegistry
    vault: CredentialVault
    queue: IJobQueue
    locks: IProviderLockManager
    events: IEventBus
    sync_pass: SyncPassUseCase
    scheduler: Scheduler
    worker_pool: WorkerPool
    connections: ProviderConnections
    redis_enabled: bool = False


def _uses_redis(settings: Settings) -> bool:
    return "redis" in (settings.queue_backend, settings.lock_backend, settings.event_backend)


def build_queue(settings: Settings, client: redis.Redis | None) -> IJobQueue:
    if settings.queue_backend == "redis" and client is not None:
        return RedisJobQueue(client, lease_ttl_seconds=settings.sync_pass_timeout_seconds * 2)
    return InMemoryJobQueue()


def build_locks(settings: Settings, client: redis.Redis | None) -> IProviderLockManager:
    if settings.lock_backend == "redis" and client is not None:
        # Outlives the pass timeout.
        return RedisLockManager(client, ttl_seconds=settings.sync_pass_timeout_seconds + 60)
    return InMemoryLockManager()


def build_event_bus(settings: Settings, client: redis.Redis | None) -> IEventBus:
    if settings.event_backend == "redis" and client is not None:
        return RedisEventBus(
            client,
            heartbeat_interval=settings.heartbeat_interval_seconds,
            buffer_size=settings.subscriber_buffer_size,
            publish_timeout=settings.event_publish_timeout_seconds,
        )
    return InMemoryEventBus(
        heartbeat_interval=settings.heartbeat_interval_seconds,
        buffer_size=settings.subscriber_buffer_size,
    )


@asynccontextmanager
async def service_lifespan(settings: Settings | None = None) -> AsyncIterator[ServiceRuntime]:
    """Start up, yield the runtime, then shut down in reverse order.

    Startup: database (tables when DATABASE_CREATE_TABLES), shared HTTP
    client, Redis (when any backend uses it), adapters, vault, messaging,
    sync pass, scheduler, worker pool. Shutdown: event bus, HTTP client,
    Redis, SQL engine.
    """
    settings = settings or get_settings()

    database.init_engine(settings)
    if settings.database_create_tables:
        await database.init_models()

    # Shared by Graph and the Google token endpoint.
    http_client = httpx.AsyncClient(timeout=30.0)
    redis_client: redis.Redis | None = None
    events: IEventBus | None = None
    try:
        if _uses_redis(settings):
            redis_client = await connect_redis(settings)

        store = SqlSyncStore()
        adapters = ProviderAdapterRegistry.from_settings(settings, http_client=http_client)
        vault = CredentialVault(store, adapters, settings)
        queue = build_queue(settings, redis_client)
        locks = build_locks(settings, redis_client)
        events = build_event_bus(settings, redis_client)
        sync_pass = SyncPassUseCase(
            store=store,
            vault=vault,
            adapters=adapters,
            locks=locks,
            events=events,
            normalizer=Normalizer(),
            settings=settings,
        )
        runtime = ServiceRuntime(
            settings=settings,
            store=store,
            adapters=adapters,
            vault=vault,
            queue=queue,
            locks=locks,
            events=events,
            sync_pass=sync_pass,
            scheduler=Scheduler(store, queue, settings),
            worker_pool=WorkerPool(queue, sync_pass, settings),
            connections=ProviderConnections(store, vault, events),
            redis_enabled=redis_client is not None,
        )
        logger.info(
            "Sync service ready (queue=%s, locks=%s, events=%s, workers=%d)",
            settings.queue_backend,
            settings.lock_backend,
            settings.event_backend,
            settings.worker_concurrency,
        )
        yield runtime
    finally:
        if events is not None:
            await events.close()
        await http_client.aclose()
        logger.info("HTTP client closed")
        if redis_client is not None:
            await redis_client.aclose()
            logger.info("Redis disconnected")
        await database.dispose_engine()
        logger.info("Database engine disposed")
