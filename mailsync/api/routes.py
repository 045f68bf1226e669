"""Ops endpoints: liveness and sync statistics."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from mailsync.api.schemas import HealthResponse, SyncStatsResponse
from mailsync.application.services import Scheduler, WorkerPool
from mailsync.core.config import get_settings

router = APIRouter()


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


def get_worker_pool(request: Request) -> WorkerPool | None:
    return getattr(request.app.state, "worker_pool", None)


@router.get("/health", response_model=HealthResponse)
def health_check(pool: Annotated[WorkerPool | None, Depends(get_worker_pool)]) -> HealthResponse:
    """Return ok while the process is serving; no store round-trip."""
    return HealthResponse(
        version=get_settings().app_version,
        workers_active=pool.active if pool is not None else 0,
    )


@router.get("/sync/stats", response_model=SyncStatsResponse)
async def sync_stats(scheduler: Annotated[Scheduler, Depends(get_scheduler)]) -> SyncStatsResponse:
    """Provider health aggregates plus the current queue depth."""
    return SyncStatsResponse.from_stats(await scheduler.sync_statistics())
