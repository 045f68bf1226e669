"""Bounded pool of sync workers leasing jobs from the queue."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from mailsync.core.config import Settings, get_settings
from mailsync.domain.enums import SyncJobReason
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.aio import wait_stop

if TYPE_CHECKING:
    from mailsync.application.interfaces import IJobQueue
    from mailsync.application.use_cases.sync import SyncPassUseCase
    from mailsync.domain.entities import SyncJob

logger = get_logger(__name__)

# Delay before retrying a manual/webhook job whose provider was locked.
LOCKED_RETRY_SECONDS = 5.0


class WorkerPool:
    """worker_concurrency coroutines, each running one pass at a time.

    Passes for different providers run in parallel up to the pool size; the
    queue and the provider lock keep passes for one provider serialized.
    """

    def __init__(
        self,
        queue: IJobQueue,
        sync_pass: SyncPassUseCase,
        settings: Settings | None = None,
        *,
        name: str = "worker",
    ) -> None:
        self._queue = queue
        self._sync_pass = sync_pass
        self._settings = settings or get_settings()
        self._name = name
        self.active = 0
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    async def run(self, stop: asyncio.Event) -> None:
        """Run until stop is set; in-flight passes finish before returning."""
        size = self._settings.worker_concurrency
        logger.info("Starting %d sync workers", size)
        async with asyncio.TaskGroup() as tg:
            for index in range(size):
                tg.create_task(self._worker(f"{self._name}-{index}", stop))
        logger.info("Sync workers stopped")

    async def _worker(self, worker_id: str, stop: asyncio.Event) -> None:
        poll = self._settings.queue_poll_interval_seconds
        while not stop.is_set():
            try:
                job = await self._queue.lease(worker_id)
            except Exception:
                logger.exception("Worker %s could not lease a job", worker_id)
                job = None
            if job is None:
                await wait_stop(stop, poll)
                continue
            try:
                await self.process(worker_id, job)
            except Exception:
                logger.exception("Worker %s could not settle job %s", worker_id, job.job_id)

    async def process(self, worker_id: str, job: SyncJob) -> None:
        """Run one leased job, then ack it (or nack it for a later retry)."""
        self.active += 1
        try:
            outcome = await self._sync_pass.run(
                job.provider_id,
                require_due=job.reason == SyncJobReason.SCHEDULED,
            )
        except Exception:
            # Pass failures land in the outcome; this is the store or lock backend.
            logger.exception("Worker %s crashed on job %s", worker_id, job.job_id)
            self.failed += 1
            await self._retry(job, self._settings.rate_limit_default_delay_seconds)
            return
        finally:
            self.active -= 1

        if outcome.detail == "locked" and job.reason != SyncJobReason.SCHEDULED:
            await self._retry(job, LOCKED_RETRY_SECONDS)
            return
        await self._queue.ack(job)
        if outcome.succeeded:
            self.completed += 1
        elif outcome.error_class is not None:
            self.failed += 1

    async def _retry(self, job: SyncJob, delay: float) -> None:
        if job.attempts >= self._settings.job_max_attempts:
            logger.warning(
                "Dropping job %s for provider %s after %d attempts (%s)",
                job.job_id,
                job.provider_id,
                job.attempts,
                job.reason.value,
            )
            self.dropped += 1
            await self._queue.ack(job)
            return
        await self._queue.nack(job, retry_after=delay)
