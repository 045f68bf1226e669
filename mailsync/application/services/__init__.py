"""Application services: normalizer, scheduler, worker pool, provider connections."""

from mailsync.application.services.normalizer import (
    DEFAULT_CATEGORY_TABLE,
    CategoryRule,
    Normalizer,
)
from mailsync.application.services.provider_connections import ProviderConnections
from mailsync.application.services.scheduler import Scheduler
from mailsync.application.services.worker_pool import WorkerPool

__all__ = [
    "DEFAULT_CATEGORY_TABLE",
    "CategoryRule",
    "Normalizer",
    "ProviderConnections",
    "Scheduler",
    "WorkerPool",
]
