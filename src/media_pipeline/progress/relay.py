"""Publish/subscribe channel for per-client processing progress."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Protocol

from media_pipeline.progress.events import ProgressEvent, ProgressSnapshot, Stage

logger = logging.getLogger(__name__)

EventCallback = Callable[[ProgressEvent], None]

DEFAULT_TERMINAL_RETENTION_SECONDS = 3600


class Subscription(Protocol):
    def close(self) -> None: ...


class ProgressRelay(Protocol):
    def publish(self, event: ProgressEvent) -> ProgressSnapshot | None: ...

    def snapshot(self, client_id: str) -> ProgressSnapshot | None: ...

    def subscribe(self, client_id: str, callback: EventCallback) -> Subscription: ...


def sync(relay: ProgressRelay, client_id: str, callback: EventCallback) -> ProgressSnapshot | None:
    """Replay the last known snapshot to a (re)connecting subscriber."""
    snapshot = relay.snapshot(client_id)
    if snapshot is None:
        return None
    for event in snapshot.as_events():
        callback(event)
    return snapshot


class ProgressEmitter:
    """Publisher bound to one client id."""

    def __init__(self, relay: ProgressRelay, client_id: str | None) -> None:
        self._relay = relay
        self._client_id = client_id

    def stage(self, stage: Stage) -> None:
        self._emit(lambda cid: ProgressEvent.stage_entered(cid, stage))

    def progress(self, percent: float) -> None:
        self._emit(lambda cid: ProgressEvent.progressed(cid, percent))

    def done(self) -> None:
        self._emit(ProgressEvent.done)

    def error(self, message: str) -> None:
        self._emit(lambda cid: ProgressEvent.failed(cid, message))

    def _emit(self, build: Callable[[str], ProgressEvent]) -> None:
        if not self._client_id:
            return
        self._relay.publish(build(self._client_id))


class _MemorySubscription:
    def __init__(self, relay: "InMemoryProgressRelay", client_id: str, callback: EventCallback) -> None:
        self._relay = relay
        self.client_id = client_id
        self.callback = callback

    def close(self) -> None:
        self._relay._remove(self)


class InMemoryProgressRelay:
    """Single-process relay. Delivery happens on the publishing thread."""

    def __init__(
        self,
        *,
        terminal_retention_seconds: float = DEFAULT_TERMINAL_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._snapshots: dict[str, ProgressSnapshot] = {}
        self._subscribers: dict[str, list[_MemorySubscription]] = {}
        self._retention = terminal_retention_seconds
        self._clock = clock
        self._lock = threading.RLock()

    def publish(self, event: ProgressEvent) -> ProgressSnapshot | None:
        with self._lock:
            self._purge()
            current = self._snapshots.get(event.client_id) or ProgressSnapshot(
                client_id=event.client_id, updated_at=event.timestamp
            )
            updated = current.apply(event)
            if updated is None:
                logger.debug(
                    "Dropped %s event for %s: not ahead of snapshot v%s",
                    event.kind.value,
                    event.client_id,
                    current.version,
                )
                return None
            self._snapshots[event.client_id] = updated
            subscribers = list(self._subscribers.get(event.client_id, []))
            for subscription in subscribers:
                try:
                    subscription.callback(event)
                except Exception as exc:
                    logger.error(
                        "Error delivering progress to subscriber of %s: %s",
                        event.client_id,
                        exc,
                    )
                    self._remove(subscription)
            return updated

    def snapshot(self, client_id: str) -> ProgressSnapshot | None:
        with self._lock:
            self._purge()
            return self._snapshots.get(client_id)

    def subscribe(self, client_id: str, callback: EventCallback) -> Subscription:
        subscription = _MemorySubscription(self, client_id, callback)
        with self._lock:
            self._subscribers.setdefault(client_id, []).append(subscription)
        return subscription

    def subscriber_count(self, client_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(client_id, []))

    def _remove(self, subscription: _MemorySubscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.client_id)
            if not subscribers or subscription not in subscribers:
                return
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[subscription.client_id]

    def _purge(self) -> None:
        cutoff = self._clock() - self._retention
        expired = [
            client_id
            for client_id, snapshot in self._snapshots.items()
            if snapshot.terminal and snapshot.updated_at < cutoff
        ]
        for client_id in expired:
            del self._snapshots[client_id]
