"""Sync job and mutation event entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mailsync.domain.enums import (
    JobPriority,
    MutationEventType,
    MutationReason,
    SyncJobReason,
)
from mailsync.shared.utils.datetime import utc_now
from mailsync.shared.utils.generators import generate_cuid


@dataclass
class SyncJob:
    """One scheduling unit: sync this provider once.

    Ephemeral: lives only as long as its queue entry.
    """

    provider_id: str
    tenant_id: str
    reason: SyncJobReason = SyncJobReason.SCHEDULED
    priority: JobPriority = JobPriority.NORMAL
    job_id: str = field(default_factory=generate_cuid)
    enqueued_at: datetime = field(default_factory=utc_now)
    not_before: datetime | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize for queue storage."""
        return {
            "provider_id": self.provider_id,
            "tenant_id": self.tenant_id,
            "reason": self.reason.value,
            "priority": int(self.priority),
            "job_id": self.job_id,
            "enqueued_at": self.enqueued_at.isoformat(),
            "not_before": self.not_before.isoformat() if self.not_before else None,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncJob:
        """Deserialize from queue storage."""
        not_before = data.get("not_before")
        return cls(
            provider_id=data["provider_id"],
            tenant_id=data["tenant_id"],
            reason=SyncJobReason(data["reason"]),
            priority=JobPriority(int(data["priority"])),
            job_id=data["job_id"],
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            not_before=datetime.fromisoformat(not_before) if not_before else None,
            attempts=int(data.get("attempts", 0)),
        )


@dataclass
class MutationEvent:
    """Realtime notification about a persisted change, scoped to one tenant.

    Serialized with the camelCase keys realtime consumers expect.
    """

    tenant_id: str
    type: MutationEventType
    reason: MutationReason
    provider_id: str | None = None
    entity_id: str | None = None
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON publish."""
        payload: dict[str, Any] = {
            "tenantId": self.tenant_id,
            "type": self.type.value,
            "reason": self.reason.value,
            "providerId": self.provider_id,
            "timestamp": self.timestamp,
        }
        if self.entity_id is not None:
            payload["entityId"] = self.entity_id
        if self.data:
            payload["data"] = self.data
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MutationEvent:
        """Deserialize from a pub/sub message."""
        return cls(
            tenant_id=data["tenantId"],
            type=MutationEventType(data["type"]),
            reason=MutationReason(data["reason"]),
            provider_id=data.get("providerId"),
            entity_id=data.get("entityId"),
            timestamp=data["timestamp"],
            data=data.get("data") or {},
        )

    @classmethod
    def heartbeat(cls, tenant_id: str) -> MutationEvent:
        """Keep-alive event interleaved into every subscription."""
        return cls(
            tenant_id=tenant_id,
            type=MutationEventType.HEARTBEAT,
            reason=MutationReason.HEARTBEAT,
        )
