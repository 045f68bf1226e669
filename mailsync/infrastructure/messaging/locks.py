"""Per-provider mutex: at most one active sync pass per provider id."""

from __future__ import annotations

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError, LockNotOwnedError

from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.generators import generate_lock_token

logger = get_logger(__name__)


class InMemoryLockManager:
    """Lock table for a single process.

    acquire() does not await between the check and the write, so it is
    atomic on one event loop.
    """

    def __init__(self) -> None:
        self._held: dict[str, str] = {}

    async def acquire(self, provider_id: str) -> str | None:
        if provider_id in self._held:
            return None
        token = generate_lock_token()
        self._held[provider_id] = token
        return token

    async def release(self, provider_id: str, token: str) -> None:
        if self._held.get(provider_id) == token:
            del self._held[provider_id]

    def is_locked(self, provider_id: str) -> bool:
        return provider_id in self._held


class RedisLockManager:
    """Redis locks shared across processes.

    Locks auto-expire after ttl_seconds (the pass timeout plus slack) so a
    crashed worker cannot block a provider forever.
    """

    def __init__(self, client: redis.Redis, *, ttl_seconds: float, prefix: str = "mailsync:lock") -> None:
        self._redis = client
        self._ttl = ttl_seconds
        self._prefix = prefix
        self._locks: dict[str, Lock] = {}

    def _key(self, provider_id: str) -> str:
        return f"{self._prefix}:{provider_id}"

    async def acquire(self, provider_id: str) -> str | None:
        token = generate_lock_token()
        lock = self._redis.lock(self._key(provider_id), timeout=self._ttl, thread_local=False)
        if not await lock.acquire(blocking=False, token=token):
            return None
        self._locks[token] = lock
        return token

    async def release(self, provider_id: str, token: str) -> None:
        lock = self._locks.pop(token, None)
        if lock is None:
            return
        try:
            await lock.release()
        except LockNotOwnedError:
            logger.warning("Lock for provider %s expired before release", provider_id)
        except LockError:
            logger.warning("Lock for provider %s was not held at release", provider_id)
