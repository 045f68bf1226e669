"""Per-tenant mutation event fan-out.

Every subscription gets a bounded buffer (oldest event dropped on overflow)
and a heartbeat on a fixed period. publish() never raises: a dropped event
is acceptable, the mutation is already committed.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

import redis.asyncio as redis

from mailsync.domain.entities import MutationEvent
from mailsync.domain.enums import MutationEventType
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

_CLOSED = None


class Subscription:
    """Bounded event buffer for one subscriber."""

    def __init__(self, tenant_id: str, maxsize: int) -> None:
        self.tenant_id = tenant_id
        self.dropped = 0
        self._queue: asyncio.Queue[MutationEvent | None] = asyncio.Queue(maxsize=maxsize)

    def offer(self, event: MutationEvent | None) -> None:
        """Enqueue without waiting, evicting the oldest entry when full."""
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    def close(self) -> None:
        self.offer(_CLOSED)

    async def stream(self, heartbeat_interval: float) -> AsyncIterator[MutationEvent]:
        """Yield buffered events with a heartbeat every heartbeat_interval seconds."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + heartbeat_interval
        while True:
            try:
                async with asyncio.timeout(max(0.0, deadline - loop.time())):
                    event = await self._queue.get()
            except TimeoutError:
                deadline += heartbeat_interval
                yield MutationEvent.heartbeat(self.tenant_id)
                continue
            if event is _CLOSED:
                return
            yield event


class InMemoryEventBus:
    """In-process bus; subscribers only see their own tenant's events."""

    def __init__(self, *, heartbeat_interval: float = 25.0, buffer_size: int = 256) -> None:
        self._heartbeat_interval = heartbeat_interval
        self._buffer_size = buffer_size
        self._subscribers: dict[str, set[Subscription]] = {}

    async def publish(self, event: MutationEvent) -> None:
        for subscription in self._subscribers.get(event.tenant_id, ()):
            subscription.offer(event)

    async def subscribe(self, tenant_id: str) -> AsyncIterator[MutationEvent]:
        subscription = Subscription(tenant_id, self._buffer_size)
        self._subscribers.setdefault(tenant_id, set()).add(subscription)
        try:
            async for event in subscription.stream(self._heartbeat_interval):
                yield event
        finally:
            subscribers = self._subscribers.get(tenant_id)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[tenant_id]

    def subscriber_count(self, tenant_id: str) -> int:
        return len(self._subscribers.get(tenant_id, ()))

    async def close(self) -> None:
        for subscriptions in self._subscribers.values():
            for subscription in subscriptions:
                subscription.close()


class RedisEventBus:
    """Redis pub/sub bus, one channel per tenant.

    Each subscribe() call uses its own PubSub, closed in finally, so
    concurrent subscriptions are independent.
    """

    CHANNEL_PREFIX = "mailbox_events"

    def __init__(
        self,
        client: redis.Redis,
        *,
        heartbeat_interval: float = 25.0,
        buffer_size: int = 256,
        publish_timeout: float = 2.0,
    ) -> None:
        self.redis = client
        self._heartbeat_interval = heartbeat_interval
        self._buffer_size = buffer_size
        self._publish_timeout = publish_timeout
        self._subscriptions: set[Subscription] = set()

    def _get_channel(self, tenant_id: str) -> str:
        return f"{self.CHANNEL_PREFIX}:{tenant_id}"

    async def publish(self, event: MutationEvent) -> None:
        channel = self._get_channel(event.tenant_id)
        try:
            async with asyncio.timeout(self._publish_timeout):
                await self.redis.publish(channel, json.dumps(event.to_dict()))
        except (redis.RedisError, OSError, TimeoutError) as e:
            logger.warning("Dropped %s event for %s: %s", event.reason.value, channel, type(e).__name__)
            return
        logger.debug("Published %s to %s", event.reason.value, channel)

    async def subscribe(self, tenant_id: str) -> AsyncIterator[MutationEvent]:
        channel = self._get_channel(tenant_id)
        subscription = Subscription(tenant_id, self._buffer_size)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)
        logger.info("Subscribed to %s", channel)
        self._subscriptions.add(subscription)
        reader = asyncio.create_task(self._pump(pubsub, subscription))
        try:
            async for event in subscription.stream(self._heartbeat_interval):
                yield event
        finally:
            self._subscriptions.discard(subscription)
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            logger.info("Unsubscribed from %s", channel)

    @staticmethod
    async def _pump(pubsub: redis.client.PubSub, subscription: Subscription) -> None:
        """Move messages from the PubSub connection into the subscription buffer."""
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event = MutationEvent.from_dict(json.loads(message["data"]))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    logger.warning("Ignoring malformed event on tenant %s channel", subscription.tenant_id)
                    continue
                if event.tenant_id != subscription.tenant_id or event.type == MutationEventType.HEARTBEAT:
                    continue
                subscription.offer(event)
        except redis.RedisError as e:
            logger.warning("Event subscription for tenant %s lost: %s", subscription.tenant_id, e)
            subscription.close()

    async def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
