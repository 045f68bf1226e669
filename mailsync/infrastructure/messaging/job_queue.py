"""Sync job queues.

Both implementations keep at most one pending job per provider: a second
submission merges into it and wins only with a strictly better priority.
A provider whose job is leased is not handed out again until that job is
acked or nacked, so manual jobs wait behind a running pass.
"""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import redis.asyncio as redis

from mailsync.domain.entities import SyncJob
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)


def _sort_key(job: SyncJob) -> tuple[int, float]:
    return int(job.priority), job.enqueued_at.timestamp()


class InMemoryJobQueue:
    """Single-process queue (asyncio)."""

    def __init__(self) -> None:
        self._pending: dict[str, SyncJob] = {}
        self._leased: dict[str, SyncJob] = {}
        self._lock = asyncio.Lock()

    async def enqueue(self, job: SyncJob) -> bool:
        async with self._lock:
            return self._merge(job)

    def _merge(self, job: SyncJob) -> bool:
        existing = self._pending.get(job.provider_id)
        if existing is None:
            self._pending[job.provider_id] = job
            return True
        if job.priority < existing.priority:
            existing.priority = job.priority
            existing.reason = job.reason
            existing.not_before = job.not_before
        logger.debug("Merged job for provider %s into pending %s", job.provider_id, existing.job_id)
        return False

    async def lease(self, worker_id: str) -> SyncJob | None:
        now = utc_now()
        async with self._lock:
            ready = [
                job
                for provider_id, job in self._pending.items()
                if provider_id not in self._leased
                and (job.not_before is None or job.not_before <= now)
            ]
            if not ready:
                return None
            job = min(ready, key=_sort_key)
            del self._pending[job.provider_id]
            job.attempts += 1
            self._leased[job.provider_id] = job
        logger.debug("Worker %s leased job %s (provider %s)", worker_id, job.job_id, job.provider_id)
        return job

    async def ack(self, job: SyncJob) -> None:
        async with self._lock:
            leased = self._leased.get(job.provider_id)
            if leased is not None and leased.job_id == job.job_id:
                del self._leased[job.provider_id]

    async def nack(self, job: SyncJob, retry_after: float | None = None) -> None:
        async with self._lock:
            leased = self._leased.get(job.provider_id)
            if leased is not None and leased.job_id == job.job_id:
                del self._leased[job.provider_id]
            if retry_after:
                job.not_before = utc_now() + timedelta(seconds=retry_after)
            self._merge(job)

    async def depth(self) -> int:
        return len(self._pending)


# KEYS: queue zset, jobs hash, ready-at hash
# ARGV: provider id, job json, score, ready-at ms
_ENQUEUE_LUA = """
local current = redis.call('ZSCORE', KEYS[1], ARGV[1])
if current then
  if tonumber(ARGV[3]) < tonumber(current) then
    redis.call('ZADD', KEYS[1], ARGV[3], ARGV[1])
    redis.call('HSET', KEYS[2], ARGV[1], ARGV[2])
    redis.call('HSET', KEYS[3], ARGV[1], ARGV[4])
  end
  return 0
end
redis.call('ZADD', KEYS[1], ARGV[3], ARGV[1])
redis.call('HSET', KEYS[2], ARGV[1], ARGV[2])
redis.call('HSET', KEYS[3], ARGV[1], ARGV[4])
return 1
"""

# KEYS: queue zset, jobs hash, ready-at hash
# ARGV: now ms, lease key prefix, lease ttl ms
_LEASE_LUA = """
local ids = redis.call('ZRANGE', KEYS[1], 0, -1)
for _, id in ipairs(ids) do
  if redis.call('EXISTS', ARGV[2] .. id) == 0 then
    local ready = tonumber(redis.call('HGET', KEYS[3], id) or '0')
    if ready <= tonumber(ARGV[1]) then
      local job = redis.call('HGET', KEYS[2], id)
      redis.call('ZREM', KEYS[1], id)
      redis.call('HDEL', KEYS[2], id)
      redis.call('HDEL', KEYS[3], id)
      local decoded = cjson.decode(job)
      redis.call('SET', ARGV[2] .. id, decoded['job_id'], 'PX', ARGV[3])
      return job
    end
  end
end
return nil
"""

# KEYS: lease key; ARGV: job id
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisJobQueue:
    """Queue shared by several worker processes.

    Pending jobs live in a sorted set scored by (priority, enqueue time).
    Leases are keys with a TTL so a crashed worker's lease expires.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        prefix: str = "mailsync",
        lease_ttl_seconds: float = 600.0,
    ) -> None:
        self._redis = client
        self._queue_key = f"{prefix}:queue"
        self._jobs_key = f"{prefix}:jobs"
        self._ready_key = f"{prefix}:ready_at"
        self._lease_prefix = f"{prefix}:lease:"
        self._lease_ttl_ms = int(lease_ttl_seconds * 1000)
        self._enqueue_script = client.register_script(_ENQUEUE_LUA)
        self._lease_script = client.register_script(_LEASE_LUA)
        self._release_script = client.register_script(_RELEASE_LUA)

    @staticmethod
    def _score(job: SyncJob) -> float:
        # Priority dominates; enqueue time (ms) orders within a priority.
        return int(job.priority) * 1e13 + job.enqueued_at.timestamp() * 1000

    async def enqueue(self, job: SyncJob) -> bool:
        ready_ms = int(job.not_before.timestamp() * 1000) if job.not_before else 0
        added = await self._enqueue_script(
            keys=[self._queue_key, self._jobs_key, self._ready_key],
            args=[job.provider_id, json.dumps(job.to_dict()), self._score(job), ready_ms],
        )
        return bool(int(added))

    async def lease(self, worker_id: str) -> SyncJob | None:
        raw = await self._lease_script(
            keys=[self._queue_key, self._jobs_key, self._ready_key],
            args=[int(utc_now().timestamp() * 1000), self._lease_prefix, self._lease_ttl_ms],
        )
        if raw is None:
            return None
        job = SyncJob.from_dict(json.loads(raw))
        job.attempts += 1
        logger.debug("Worker %s leased job %s (provider %s)", worker_id, job.job_id, job.provider_id)
        return job

    async def ack(self, job: SyncJob) -> None:
        await self._release_script(keys=[self._lease_prefix + job.provider_id], args=[job.job_id])

    async def nack(self, job: SyncJob, retry_after: float | None = None) -> None:
        await self.ack(job)
        if retry_after:
            job.not_before = utc_now() + timedelta(seconds=retry_after)
        await self.enqueue(job)

    async def depth(self) -> int:
        return int(await self._redis.zcard(self._queue_key))
