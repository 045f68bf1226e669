"""Messaging: job queues, provider locks and the tenant event bus (memory or Redis)."""

from mailsync.infrastructure.messaging.event_bus import (
    InMemoryEventBus,
    RedisEventBus,
    Subscription,
)
from mailsync.infrastructure.messaging.job_queue import InMemoryJobQueue, RedisJobQueue
from mailsync.infrastructure.messaging.locks import InMemoryLockManager, RedisLockManager
from mailsync.infrastructure.messaging.redis_client import connect_redis

__all__ = [
    "InMemoryEventBus",
    "InMemoryJobQueue",
    "InMemoryLockManager",
    "RedisEventBus",
    "RedisJobQueue",
    "RedisLockManager",
    "Subscription",
    "connect_redis",
]
