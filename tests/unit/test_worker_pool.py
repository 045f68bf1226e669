"""Worker pool: ack/nack settlement and bounded concurrency."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from mailsync.application.dtos import PassOutcome
from mailsync.application.services import WorkerPool
from mailsync.domain.entities import SyncJob
from mailsync.domain.enums import ErrorClass, JobPriority, SyncJobReason, SyncState


def _job(reason=SyncJobReason.SCHEDULED, provider_id="p1") -> SyncJob:
    return SyncJob(provider_id=provider_id, tenant_id="t1", reason=reason, priority=JobPriority.NORMAL)


def _queue() -> MagicMock:
    queue = MagicMock()
    queue.ack = AsyncMock()
    queue.nack = AsyncMock()
    return queue


def _sync_pass(outcome=None, side_effect=None) -> MagicMock:
    sync_pass = MagicMock()
    sync_pass.run = AsyncMock(return_value=outcome, side_effect=side_effect)
    return sync_pass


async def test_successful_pass_is_acked(settings) -> None:
    queue = _queue()
    sync_pass = _sync_pass(PassOutcome(provider_id="p1", state=SyncState.DONE))
    pool = WorkerPool(queue, sync_pass, settings)

    await pool.process("w-0", _job())

    sync_pass.run.assert_awaited_once_with("p1", require_due=True)
    queue.ack.assert_awaited_once()
    assert pool.completed == 1
    assert pool.active == 0


async def test_failed_pass_is_acked_and_counted(settings) -> None:
    """Failures already rescheduled the provider; the job itself is done."""
    queue = _queue()
    outcome = PassOutcome(provider_id="p1", state=SyncState.FAILED, error_class=ErrorClass.NETWORK_TRANSIENT)
    pool = WorkerPool(queue, _sync_pass(outcome), settings)

    await pool.process("w-0", _job())

    queue.ack.assert_awaited_once()
    queue.nack.assert_not_awaited()
    assert pool.failed == 1


async def test_manual_job_blocked_by_lock_is_retried(settings) -> None:
    """A manual request that hit a running pass is re-queued shortly."""
    queue = _queue()
    outcome = PassOutcome(provider_id="p1", state=SyncState.SKIPPED, detail="locked")
    pool = WorkerPool(queue, _sync_pass(outcome), settings)
    job = _job(SyncJobReason.MANUAL)

    await pool.process("w-0", job)

    queue.nack.assert_awaited_once_with(job, retry_after=5.0)
    queue.ack.assert_not_awaited()


async def test_scheduled_job_blocked_by_lock_is_dropped(settings) -> None:
    queue = _queue()
    outcome = PassOutcome(provider_id="p1", state=SyncState.SKIPPED, detail="locked")
    pool = WorkerPool(queue, _sync_pass(outcome), settings)

    await pool.process("w-0", _job())

    queue.ack.assert_awaited_once()
    assert pool.completed == 0
    assert pool.failed == 0


async def test_manual_job_runs_without_due_check(settings) -> None:
    sync_pass = _sync_pass(PassOutcome(provider_id="p1", state=SyncState.DONE))
    pool = WorkerPool(_queue(), sync_pass, settings)
    await pool.process("w-0", _job(SyncJobReason.WEBHOOK))
    sync_pass.run.assert_awaited_once_with("p1", require_due=False)


async def test_crashed_pass_is_nacked(settings) -> None:
    """An error escaping the pass (store down) returns the job to the queue."""
    queue = _queue()
    pool = WorkerPool(queue, _sync_pass(side_effect=RuntimeError("db down")), settings)
    job = _job()

    await pool.process("w-0", job)

    queue.nack.assert_awaited_once_with(job, retry_after=settings.rate_limit_default_delay_seconds)
    assert pool.failed == 1
    assert pool.active == 0


async def test_crashed_job_is_dropped_after_max_attempts(settings_factory) -> None:
    queue = _queue()
    pool = WorkerPool(queue, _sync_pass(side_effect=RuntimeError("db down")), settings_factory(job_max_attempts=3))
    job = _job()
    job.attempts = 3

    await pool.process("w-0", job)

    queue.ack.assert_awaited_once_with(job)
    queue.nack.assert_not_awaited()
    assert pool.dropped == 1


async def test_always_crashing_job_leaves_the_queue(settings_factory, memory_queue) -> None:
    """Each lease counts an attempt; the job stops cycling at the cap."""
    sync_pass = _sync_pass(side_effect=RuntimeError("db down"))
    pool = WorkerPool(
        memory_queue,
        sync_pass,
        settings_factory(job_max_attempts=3, rate_limit_default_delay_seconds=0),
    )
    await memory_queue.enqueue(_job(SyncJobReason.MANUAL))

    runs = 0
    while (job := await memory_queue.lease("w-0")) is not None:
        runs += 1
        await pool.process("w-0", job)
        assert runs <= 3

    assert runs == 3
    assert sync_pass.run.await_count == 3
    assert pool.dropped == 1
    assert await memory_queue.depth() == 0


async def test_run_processes_queue_with_bounded_concurrency(settings_factory, memory_queue) -> None:
    """Never more than worker_concurrency passes in flight."""
    in_flight = 0
    peak = 0
    done = []

    async def _run(provider_id, *, require_due):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        done.append(provider_id)
        return PassOutcome(provider_id=provider_id, state=SyncState.DONE)

    sync_pass = MagicMock()
    sync_pass.run = _run
    for i in range(6):
        await memory_queue.enqueue(_job(provider_id=f"p{i}"))
    pool = WorkerPool(
        memory_queue,
        sync_pass,
        settings_factory(worker_concurrency=2, queue_poll_interval_seconds=0.01),
    )
    stop = asyncio.Event()

    task = asyncio.create_task(pool.run(stop))
    async with asyncio.timeout(2):
        while len(done) < 6:
            await asyncio.sleep(0.01)
    stop.set()
    async with asyncio.timeout(2):
        await task

    assert sorted(done) == [f"p{i}" for i in range(6)]
    assert peak <= 2
    assert pool.completed == 6
    assert await memory_queue.depth() == 0
