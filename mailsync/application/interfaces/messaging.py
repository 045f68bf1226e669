"""Messaging ports: job queue, per-provider locks and the tenant event bus."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from mailsync.domain.entities import MutationEvent, SyncJob


class IJobQueue(Protocol):
    """At-least-once job queue with per-provider deduplication."""

    async def enqueue(self, job: SyncJob) -> bool:
        """Add a job. Returns False when it merged into a pending job."""

    async def lease(self, worker_id: str) -> SyncJob | None:
        """Hand out the best ready job, or None."""

    async def ack(self, job: SyncJob) -> None:
        """Finish a leased job."""

    async def nack(self, job: SyncJob, retry_after: float | None = None) -> None:
        """Return a leased job; it becomes ready after retry_after seconds."""

    async def depth(self) -> int:
        """Pending (not leased) job count."""


class IProviderLockManager(Protocol):
    """Mutex keyed on provider id."""

    async def acquire(self, provider_id: str) -> str | None:
        """Try once; return an ownership token or None if held."""

    async def release(self, provider_id: str, token: str) -> None:
        """Release if token still owns the lock."""


class IEventBus(Protocol):
    """Per-tenant publish/subscribe."""

    async def publish(self, event: MutationEvent) -> None:
        """Fire-and-forget; never raises."""

    def subscribe(self, tenant_id: str) -> AsyncIterator[MutationEvent]:
        """Stream of this tenant's events interleaved with heartbeats."""

    async def close(self) -> None:
        """Release transport resources."""
