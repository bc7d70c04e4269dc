"""Awaitable relay access for request handlers running on an event loop."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from media_pipeline.progress.events import ProgressEvent, ProgressSnapshot
from media_pipeline.progress.redis_relay import decode_snapshot
from media_pipeline.progress.relay import ProgressRelay, Subscription

LOGGER = logging.getLogger(__name__)


class AsyncSubscription(Protocol):
    async def get(self) -> ProgressEvent: ...

    async def close(self) -> None: ...


class AsyncProgressRelay(Protocol):
    async def snapshot(self, client_id: str) -> ProgressSnapshot | None: ...

    async def subscribe(self, client_id: str) -> AsyncSubscription: ...

    async def close(self) -> None: ...


class _QueuedSubscription:
    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self.inner: Subscription | None = None

    def push(self, event: ProgressEvent) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def get(self) -> ProgressEvent:
        return await self._queue.get()

    async def close(self) -> None:
        if self.inner is not None:
            self.inner.close()
            self.inner = None


class LocalAsyncRelay:
    """Loop-side view of an in-process relay, whose calls never block on I/O."""

    def __init__(self, relay: ProgressRelay) -> None:
        self.relay = relay

    async def snapshot(self, client_id: str) -> ProgressSnapshot | None:
        return self.relay.snapshot(client_id)

    async def subscribe(self, client_id: str) -> AsyncSubscription:
        subscription = _QueuedSubscription(asyncio.get_running_loop())
        subscription.inner = self.relay.subscribe(client_id, subscription.push)
        return subscription

    async def close(self) -> None:
        return None


class _AsyncRedisSubscription:
    def __init__(self, pubsub, channel: str) -> None:
        self._pubsub = pubsub
        self._channel = channel

    async def get(self) -> ProgressEvent:
        while True:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=None
            )
            if message is None or message.get("type") != "message":
                continue
            try:
                return ProgressEvent.from_dict(json.loads(message["data"]))
            except (TypeError, KeyError, ValueError) as exc:
                LOGGER.error("Failed to parse progress message: %s", exc)

    async def close(self) -> None:
        try:
            await self._pubsub.unsubscribe(self._channel)
        except RedisError as exc:
            LOGGER.warning("Failed to unsubscribe from %s: %s", self._channel, exc)
        finally:
            await self._pubsub.aclose()


class AsyncRedisProgressRelay:
    """Reads the keys and channels written by ``RedisProgressRelay``."""

    def __init__(self, client: aioredis.Redis, *, key_prefix: str = "upload") -> None:
        self._redis = client
        self._prefix = key_prefix

    @classmethod
    def connect(cls, *, host: str, port: int, db: int) -> "AsyncRedisProgressRelay":
        return cls(aioredis.Redis(host=host, port=port, db=db))

    async def snapshot(self, client_id: str) -> ProgressSnapshot | None:
        return decode_snapshot(
            await self._redis.get(f"{self._prefix}:{client_id}:progress")
        )

    async def subscribe(self, client_id: str) -> AsyncSubscription:
        channel = f"{self._prefix}:{client_id}:events"
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        LOGGER.info("Listening to Redis channel: %s", channel)
        return _AsyncRedisSubscription(pubsub, channel)

    async def close(self) -> None:
        await self._redis.aclose()
