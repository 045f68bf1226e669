"""Ops API schemas."""

from pydantic import BaseModel, Field

from mailsync.application.dtos import SyncStatistics


class HealthResponse(BaseModel):
    """Response for GET /health (liveness)."""

    status: str = Field(default="ok", description="Service status")
    version: str = Field(..., description="Service version")
    workers_active: int = Field(default=0, description="Passes currently running in this process")


class SyncStatsResponse(BaseModel):
    """Response for GET /sync/stats."""

    active_providers: int
    never_synced: int
    synced_last_24h: int
    in_error: int
    priority_distribution: dict[int, int] = Field(
        ..., description="Active providers per priority tier (1 = busiest)"
    )
    avg_activity_rate: float = Field(..., description="Mean emails/hour across active providers")
    queue_depth: int

    @classmethod
    def from_stats(cls, stats: SyncStatistics) -> "SyncStatsResponse":
        return cls(
            active_providers=stats.active_providers,
            never_synced=stats.never_synced,
            synced_last_24h=stats.synced_last_24h,
            in_error=stats.in_error,
            priority_distribution=dict(stats.priority_distribution),
            avg_activity_rate=stats.avg_activity_rate,
            queue_depth=stats.queue_depth,
        )
