"""Provider locks: in-memory table and the Redis lock wrapper."""

from unittest.mock import AsyncMock, MagicMock

from redis.exceptions import LockNotOwnedError

from mailsync.infrastructure.messaging import InMemoryLockManager, RedisLockManager


async def test_second_acquire_fails_until_release() -> None:
    locks = InMemoryLockManager()
    token = await locks.acquire("p1")
    assert token is not None
    assert await locks.acquire("p1") is None
    assert await locks.acquire("p2") is not None

    await locks.release("p1", token)
    assert not locks.is_locked("p1")
    assert await locks.acquire("p1") is not None


async def test_release_with_stale_token_is_ignored() -> None:
    """Only the holder's token releases the lock."""
    locks = InMemoryLockManager()
    await locks.acquire("p1")
    await locks.release("p1", "someone-else")
    assert locks.is_locked("p1")


def _redis_with_lock(acquired: bool) -> tuple[MagicMock, MagicMock]:
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=acquired)
    lock.release = AsyncMock()
    client = MagicMock()
    client.lock.return_value = lock
    return client, lock


async def test_redis_lock_is_non_blocking_with_ttl() -> None:
    """Acquire never waits and the key expires after the TTL."""
    client, lock = _redis_with_lock(True)
    locks = RedisLockManager(client, ttl_seconds=360)

    token = await locks.acquire("p1")

    assert token is not None
    client.lock.assert_called_once_with("mailsync:lock:p1", timeout=360, thread_local=False)
    lock.acquire.assert_awaited_once_with(blocking=False, token=token)
    await locks.release("p1", token)
    lock.release.assert_awaited_once()


async def test_redis_lock_held_elsewhere_returns_none() -> None:
    client, _ = _redis_with_lock(False)
    locks = RedisLockManager(client, ttl_seconds=360)
    assert await locks.acquire("p1") is None


async def test_redis_lock_expired_before_release_is_logged_not_raised() -> None:
    client, lock = _redis_with_lock(True)
    lock.release.side_effect = LockNotOwnedError("expired")
    locks = RedisLockManager(client, ttl_seconds=1)
    token = await locks.acquire("p1")
    await locks.release("p1", token)
