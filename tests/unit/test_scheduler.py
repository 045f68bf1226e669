"""Scheduler: due selection, job priority, manual and webhook submission."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailsync.application.dtos import SyncStatistics
from mailsync.application.services import Scheduler
from mailsync.domain.enums import JobPriority, SyncJobReason
from mailsync.domain.exceptions import ProviderInactiveException, ResourceNotFoundException
from mailsync.shared.utils.datetime import utc_now


async def test_tick_enqueues_one_job_per_due_provider(
    settings, memory_queue, fake_store_factory, snapshot_factory
) -> None:
    """Tier maps to queue priority; tick reports newly queued jobs."""
    store = fake_store_factory()
    store.due = [
        snapshot_factory(id="fast", sync_priority=1),
        snapshot_factory(id="slow", sync_priority=5),
    ]
    scheduler = Scheduler(store, memory_queue, settings)

    assert await scheduler.tick() == 2

    first = await memory_queue.lease("w1")
    second = await memory_queue.lease("w1")
    assert (first.provider_id, first.priority) == ("fast", JobPriority.HIGH)
    assert (second.provider_id, second.priority) == ("slow", JobPriority.LOW)
    assert first.reason == SyncJobReason.SCHEDULED


async def test_provider_still_pending_is_not_queued_twice(
    settings, memory_queue, fake_store_factory, snapshot_factory
) -> None:
    """A provider stays due until its pass checkpoints; the queue merges."""
    store = fake_store_factory()
    store.due = [snapshot_factory(id="p1")]
    scheduler = Scheduler(store, memory_queue, settings)

    assert await scheduler.tick() == 1
    assert await scheduler.tick() == 0
    assert await memory_queue.depth() == 1


async def test_tick_respects_batch_size(settings_factory, memory_queue, fake_store_factory, snapshot_factory) -> None:
    store = fake_store_factory()
    store.due = [snapshot_factory(id=f"p{i}") for i in range(5)]
    scheduler = Scheduler(store, memory_queue, settings_factory(scheduler_batch_size=3))

    assert await scheduler.tick(utc_now()) == 3


async def test_manual_submission_is_urgent(settings, memory_queue, fake_store_factory, snapshot_factory) -> None:
    """Manual sync bypasses the due time and jumps the queue."""
    provider = snapshot_factory(next_sync_at=utc_now() + timedelta(hours=5))
    store = fake_store_factory(provider, snapshot_factory(id="other", sync_priority=1))
    store.due = [store.providers["other"]]
    scheduler = Scheduler(store, memory_queue, settings)
    await scheduler.tick()

    job = await scheduler.submit_manual(provider.id)

    assert job.priority == JobPriority.URGENT
    assert job.reason == SyncJobReason.MANUAL
    assert (await memory_queue.lease("w1")).provider_id == provider.id


async def test_webhook_merges_into_pending_scheduled_job(
    settings, memory_queue, fake_store_factory, snapshot_factory
) -> None:
    provider = snapshot_factory(sync_priority=4)
    store = fake_store_factory(provider)
    store.due = [provider]
    scheduler = Scheduler(store, memory_queue, settings)
    await scheduler.tick()

    await scheduler.submit_webhook(provider.id)

    assert await memory_queue.depth() == 1
    job = await memory_queue.lease("w1")
    assert job.reason == SyncJobReason.WEBHOOK
    assert job.priority == JobPriority.URGENT


async def test_submit_unknown_provider_raises(settings, memory_queue, fake_store_factory) -> None:
    scheduler = Scheduler(fake_store_factory(), memory_queue, settings)
    with pytest.raises(ResourceNotFoundException):
        await scheduler.submit_manual("missing")


async def test_submit_inactive_provider_raises(
    settings, memory_queue, fake_store_factory, snapshot_factory
) -> None:
    """A deactivated provider needs reconnection, not another pass."""
    store = fake_store_factory(snapshot_factory(is_active=False))
    scheduler = Scheduler(store, memory_queue, settings)
    with pytest.raises(ProviderInactiveException):
        await scheduler.submit_webhook("p1")
    assert await memory_queue.depth() == 0


async def test_statistics_include_queue_depth(settings, memory_queue, snapshot_factory) -> None:
    store = MagicMock()
    store.sync_statistics = AsyncMock(
        return_value=SyncStatistics(
            active_providers=2,
            never_synced=1,
            synced_last_24h=1,
            in_error=0,
            priority_distribution={3: 2},
            avg_activity_rate=0.5,
        )
    )
    store.list_due_providers = AsyncMock(return_value=[snapshot_factory()])
    scheduler = Scheduler(store, memory_queue, settings)
    await scheduler.tick()

    stats = await scheduler.sync_statistics()

    assert stats.active_providers == 2
    assert stats.queue_depth == 1


def _fail_once():
    calls = []

    def _side_effect(now, limit):
        calls.append(now)
        if len(calls) == 1:
            raise RuntimeError("db down")
        return []

    return _side_effect


async def test_run_survives_a_failing_tick(settings_factory, memory_queue) -> None:
    """Store errors are logged; the loop keeps ticking until stopped."""
    store = MagicMock()
    store.list_due_providers = AsyncMock(side_effect=_fail_once())
    scheduler = Scheduler(store, memory_queue, settings_factory(scheduler_tick_seconds=0.01))
    stop = asyncio.Event()

    task = asyncio.create_task(scheduler.run(stop))
    await asyncio.sleep(0.05)
    stop.set()
    async with asyncio.timeout(1):
        await task

    assert store.list_due_providers.await_count >= 2
