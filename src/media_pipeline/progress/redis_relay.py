"""Redis-backed progress relay: a snapshot key plus a pub/sub channel per client id."""

from __future__ import annotations

import json
import logging
from typing import Any

from redis import Redis
from redis.exceptions import RedisError, WatchError

from media_pipeline.progress.events import ProgressEvent, ProgressSnapshot
from media_pipeline.progress.relay import (
    DEFAULT_TERMINAL_RETENTION_SECONDS,
    EventCallback,
    Subscription,
)

LOGGER = logging.getLogger(__name__)

_MAX_WATCH_RETRIES = 5


class _RedisSubscription:
    def __init__(self, pubsub, thread) -> None:
        self._pubsub = pubsub
        self._thread = thread

    def close(self) -> None:
        self._thread.stop()
        self._pubsub.close()


class RedisProgressRelay:
    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "upload",
        ttl_seconds: int = DEFAULT_TERMINAL_RETENTION_SECONDS,
        poll_interval: float = 0.1,
    ) -> None:
        self._redis = client
        self._prefix = key_prefix
        self._ttl = ttl_seconds
        self._poll_interval = poll_interval

    def _snapshot_key(self, client_id: str) -> str:
        return f"{self._prefix}:{client_id}:progress"

    def _channel(self, client_id: str) -> str:
        return f"{self._prefix}:{client_id}:events"

    def publish(self, event: ProgressEvent) -> ProgressSnapshot | None:
        key = self._snapshot_key(event.client_id)
        try:
            for _ in range(_MAX_WATCH_RETRIES):
                with self._redis.pipeline() as pipe:
                    try:
                        pipe.watch(key)
                        current = decode_snapshot(pipe.get(key)) or ProgressSnapshot(
                            client_id=event.client_id, updated_at=event.timestamp
                        )
                        updated = current.apply(event)
                        if updated is None:
                            pipe.unwatch()
                            return None
                        pipe.multi()
                        pipe.set(key, json.dumps(updated.to_dict()), ex=self._ttl)
                        pipe.publish(
                            self._channel(event.client_id), json.dumps(event.to_dict())
                        )
                        pipe.execute()
                        return updated
                    except WatchError:
                        continue
            LOGGER.warning(
                "Gave up publishing %s for %s after concurrent updates",
                event.kind.value,
                event.client_id,
            )
        except RedisError as exc:
            LOGGER.error(
                "Failed to publish %s event for %s: %s",
                event.kind.value,
                event.client_id,
                exc,
            )
        return None

    def snapshot(self, client_id: str) -> ProgressSnapshot | None:
        return decode_snapshot(self._redis.get(self._snapshot_key(client_id)))

    def subscribe(self, client_id: str, callback: EventCallback) -> Subscription:
        def handler(message: dict[str, Any]) -> None:
            try:
                payload = json.loads(message["data"])
                event = ProgressEvent.from_dict(payload)
            except (TypeError, KeyError, ValueError) as exc:
                LOGGER.error("Failed to parse progress message: %s", exc)
                return
            callback(event)

        pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(**{self._channel(client_id): handler})
        thread = pubsub.run_in_thread(sleep_time=self._poll_interval, daemon=True)
        LOGGER.info("Listening to Redis channel: %s", self._channel(client_id))
        return _RedisSubscription(pubsub, thread)


def decode_snapshot(raw: bytes | str | None) -> ProgressSnapshot | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        return ProgressSnapshot.from_dict(json.loads(raw))
    except (KeyError, ValueError) as exc:
        LOGGER.error("Discarding unreadable progress snapshot: %s", exc)
        return None


def create_redis_relay(*, host: str, port: int, db: int, ttl_seconds: int) -> RedisProgressRelay:
    return RedisProgressRelay(
        Redis(host=host, port=port, db=db), ttl_seconds=ttl_seconds
    )
