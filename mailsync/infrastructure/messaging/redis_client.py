"""Redis connection shared by the Redis-backed queue, locks and event bus."""

from __future__ import annotations

import redis.asyncio as redis

from mailsync.core.config import Settings
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


async def connect_redis(settings: Settings) -> redis.Redis:
    """Open a client and verify it with PING. Call on service startup.

    Raises redis.ConnectionError / redis.TimeoutError when Redis is down;
    a service configured for Redis backends must not start without it.
    """
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password.get_secret_value() if settings.redis_password else None,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        await client.ping()
    except (redis.ConnectionError, redis.TimeoutError):
        await client.aclose()
        logger.error("Redis connection failed: %s:%s", settings.redis_host, settings.redis_port)
        raise
    logger.info("Redis connected: %s:%s/%s", settings.redis_host, settings.redis_port, settings.redis_db)
    return client
