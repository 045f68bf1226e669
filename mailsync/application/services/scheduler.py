"""Scheduler: turns due providers into queued sync jobs."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime
from typing import TYPE_CHECKING

from mailsync.core.config import Settings, get_settings
from mailsync.domain.entities import SyncJob
from mailsync.domain.enums import SyncJobReason
from mailsync.domain.exceptions import ProviderInactiveException, ResourceNotFoundException
from mailsync.domain.sync_policy import job_priority
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, traced
from mailsync.shared.utils.aio import wait_stop
from mailsync.shared.utils.datetime import utc_now

if TYPE_CHECKING:
    from mailsync.application.dtos import SyncStatistics
    from mailsync.application.interfaces import IJobQueue, ISyncStore

logger = get_logger(__name__)


class Scheduler:
    """Selects due providers on a fixed tick and submits one job each.

    next_sync_at is only written by the pass itself, so a provider whose job
    is still queued or running stays due; the queue's per-provider merge
    keeps that from producing duplicate work.
    """

    def __init__(self, store: ISyncStore, queue: IJobQueue, settings: Settings | None = None) -> None:
        self._store = store
        self._queue = queue
        self._settings = settings or get_settings()

    @traced("scheduler.tick")
    async def tick(self, now: datetime | None = None) -> int:
        """Submit jobs for providers due at now. Returns how many were new."""
        now = now or utc_now()
        providers = await self._store.list_due_providers(now, self._settings.scheduler_batch_size)
        submitted = 0
        for provider in providers:
            job = SyncJob(
                provider_id=provider.id,
                tenant_id=provider.tenant_id,
                reason=SyncJobReason.SCHEDULED,
                priority=job_priority(SyncJobReason.SCHEDULED, provider.sync_priority),
            )
            if await self._queue.enqueue(job):
                submitted += 1
        add_span_attributes(batch_size=len(providers), submitted=submitted)
        if providers:
            logger.info("Scheduler tick: %d due, %d submitted", len(providers), submitted)
        return submitted

    async def submit_manual(self, provider_id: str) -> SyncJob:
        """Force sync now; queues behind a running pass, never preempts it."""
        return await self._submit(provider_id, SyncJobReason.MANUAL)

    async def submit_webhook(self, provider_id: str) -> SyncJob:
        """Vendor push notification: skips the due-time check."""
        return await self._submit(provider_id, SyncJobReason.WEBHOOK)

    async def _submit(self, provider_id: str, reason: SyncJobReason) -> SyncJob:
        provider = await self._store.get_provider(provider_id)
        if provider is None:
            raise ResourceNotFoundException("ProviderConfig", provider_id)
        if not provider.is_active:
            raise ProviderInactiveException(provider_id)
        job = SyncJob(
            provider_id=provider.id,
            tenant_id=provider.tenant_id,
            reason=reason,
            priority=job_priority(reason, provider.sync_priority),
        )
        merged = not await self._queue.enqueue(job)
        logger.info(
            "Submitted %s sync for provider %s%s",
            reason.value,
            provider_id,
            " (merged into pending job)" if merged else "",
        )
        return job

    async def sync_statistics(self) -> SyncStatistics:
        stats = await self._store.sync_statistics(utc_now())
        return dataclasses.replace(stats, queue_depth=await self._queue.depth())

    async def run(self, stop: asyncio.Event) -> None:
        """Tick until stop is set. A failed tick is logged and retried next tick."""
        interval = self._settings.scheduler_tick_seconds
        logger.info("Scheduler started (tick every %ss)", interval)
        while not stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await wait_stop(stop, interval)
        logger.info("Scheduler stopped")
