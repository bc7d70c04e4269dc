from __future__ import annotations

import threading
import time
from typing import Callable

from redis import Redis
from redis.exceptions import WatchError


class RedisUploadLease:
    """Lease stored as ``SET key owner NX EX ttl``; the owner may renew it."""

    def __init__(self, client: Redis) -> None:
        self._redis = client

    def acquire(self, key: str, owner: str, ttl_seconds: int) -> bool:
        if self._redis.set(key, owner, nx=True, ex=ttl_seconds):
            return True
        current = self._redis.get(key)
        if isinstance(current, bytes):
            current = current.decode("utf-8")
        if current == owner:
            self._redis.expire(key, ttl_seconds)
            return True
        return False

    def release(self, key: str, owner: str) -> None:
        with self._redis.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.get(key)
                if isinstance(current, bytes):
                    current = current.decode("utf-8")
                if current != owner:
                    pipe.unwatch()
                    return
                pipe.multi()
                pipe.delete(key)
                pipe.execute()
            except WatchError:
                # Re-acquired by someone else between the read and the delete.
                return


class InMemoryUploadLease:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def acquire(self, key: str, owner: str, ttl_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] != owner and entry[1] > now:
                return False
            self._entries[key] = (owner, now + ttl_seconds)
            return True

    def release(self, key: str, owner: str) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] == owner:
                del self._entries[key]
