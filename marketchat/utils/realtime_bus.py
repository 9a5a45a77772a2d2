import asyncio
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from marketchat.config import get_settings
from marketchat.utils.errors import TransientIOError
from marketchat.utils.logger import get_logger


logger = get_logger(__name__)

OnMessage = Callable[[str], Awaitable[None]]


def conversation_channel(conversation_id: str) -> str:
    return f"messages:conversation:{conversation_id}"


def receiver_channel(receiver_id: str) -> str:
    return f"messages:receiver:{receiver_id}"


_CLOSED = object()


class LocalSubscription:

    def __init__(self, bus: "LocalBus", channels: List[str], on_message: OnMessage) -> None:
        self._bus = bus
        self.channels = channels
        self._on_message = on_message
        self._queue: asyncio.Queue = asyncio.Queue()
        self._running = True

    def deliver(self, message: str) -> None:
        if self._running:
            self._queue.put_nowait(message)

    def fail(self, reason: str = "connection lost") -> None:
        """Drop the subscription as if the channel went away."""
        self._queue.put_nowait(TransientIOError(reason))

    async def run(self) -> None:
        while self._running:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, TransientIOError):
                self._running = False
                self._bus.detach(self)
                raise item
            await self._on_message(item)

    async def cancel(self) -> None:
        if not self._running:
            return
        self._running = False
        self._bus.detach(self)
        self._queue.put_nowait(_CLOSED)


class LocalBus:
    """In-process pub/sub for single-worker deployments and tests."""

    enabled = True

    def __init__(self) -> None:
        self._subscribers: Dict[str, Set[LocalSubscription]] = defaultdict(set)

    async def publish(self, channel: str, message: str) -> None:
        for sub in list(self._subscribers.get(channel, ())):
            sub.deliver(message)

    async def subscribe(self, channels: Iterable[str], on_message: OnMessage) -> LocalSubscription:
        sub = LocalSubscription(self, list(channels), on_message)
        for channel in sub.channels:
            self._subscribers[channel].add(sub)
        return sub

    def detach(self, sub: LocalSubscription) -> None:
        for channel in sub.channels:
            subs = self._subscribers.get(channel)
            if subs is None:
                continue
            subs.discard(sub)
            if not subs:
                del self._subscribers[channel]

    def subscriptions(self, channel: str) -> List[LocalSubscription]:
        return list(self._subscribers.get(channel, ()))

    async def close(self) -> None:
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                await sub.cancel()


class RedisSubscription:

    def __init__(self, pubsub, channels: List[str], on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self.channels = channels
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (RedisConnectionError, RedisTimeoutError) as exc:
                self._running = False
                raise TransientIOError(f"redis subscription lost: {exc}") from exc
            if msg and msg.get("type") == "message":
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await self._on_message(data)

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(*self.channels)
            await self._pubsub.reset()
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.debug("Ignoring redis error while unsubscribing: %s", exc)


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        try:
            await self._redis.publish(channel, message)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientIOError(f"redis publish failed: {exc}") from exc

    async def subscribe(self, channels: Iterable[str], on_message: OnMessage) -> RedisSubscription:
        channels = list(channels)
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(*channels)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientIOError(f"redis subscribe failed: {exc}") from exc
        return RedisSubscription(pubsub, channels, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url: Optional[str] = get_settings().redis_url
    if url:
        _bus = RedisBus(url)
        logger.info("Realtime bus: redis")
    else:
        _bus = LocalBus()
        logger.info("Realtime bus: in-process")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is None:
        return
    await _bus.close()
    _bus = None
