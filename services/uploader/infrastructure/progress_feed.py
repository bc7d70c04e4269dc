from __future__ import annotations

import logging
import threading

import httpx

from media_pipeline.progress.events import ProgressSnapshot
from media_pipeline.progress.relay import EventCallback, ProgressRelay, Subscription

LOGGER = logging.getLogger(__name__)


def _parse_snapshot(payload: dict) -> ProgressSnapshot | None:
    if payload.get("status") == "idle":
        return None
    return ProgressSnapshot.from_dict(payload)


class _PollingSubscription:
    def __init__(
        self,
        feed: "HttpProgressFeed",
        client_id: str,
        callback: EventCallback,
    ) -> None:
        self._feed = feed
        self._client_id = client_id
        self._callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"progress-poll-{client_id}", daemon=True
        )

    def start(self) -> "_PollingSubscription":
        self._thread.start()
        return self

    def close(self) -> None:
        self._stop.set()

    def _run(self) -> None:
        version = 0
        while not self._stop.is_set():
            try:
                snapshot = self._feed.fetch(self._client_id, since=version)
            except httpx.HTTPError as exc:
                LOGGER.warning("Progress poll for %s failed: %s", self._client_id, exc)
                self._stop.wait(self._feed.retry_seconds)
                continue
            if snapshot is None or snapshot.version <= version:
                continue
            version = snapshot.version
            if self._stop.is_set():
                return
            # Consumers drop events that are not ahead of what they hold.
            for event in snapshot.as_events():
                self._callback(event)
            if snapshot.terminal:
                return


class HttpProgressFeed:
    """Follows ``GET /v1/progress/{clientId}`` with long polls."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        wait_seconds: float = 25.0,
        retry_seconds: float = 2.0,
    ) -> None:
        self._client = client
        self._wait = wait_seconds
        self.retry_seconds = retry_seconds

    @classmethod
    def create(cls, base_url: str, *, wait_seconds: float = 25.0) -> "HttpProgressFeed":
        client = httpx.Client(base_url=base_url, timeout=wait_seconds + 10)
        return cls(client, wait_seconds=wait_seconds)

    def close(self) -> None:
        self._client.close()

    def fetch(self, client_id: str, *, since: int | None = None) -> ProgressSnapshot | None:
        params = {}
        if since is not None:
            params = {"since": since, "wait": self._wait}
        response = self._client.get(f"/v1/progress/{client_id}", params=params)
        response.raise_for_status()
        return _parse_snapshot(response.json())

    def snapshot(self, client_id: str) -> ProgressSnapshot | None:
        try:
            return self.fetch(client_id)
        except httpx.HTTPError as exc:
            LOGGER.warning("Could not read progress for %s: %s", client_id, exc)
            return None

    def subscribe(self, client_id: str, callback: EventCallback) -> Subscription:
        return _PollingSubscription(self, client_id, callback).start()


class RelayProgressFeed:
    """Reads a relay directly, for clients living next to the pipeline."""

    def __init__(self, relay: ProgressRelay) -> None:
        self._relay = relay

    def subscribe(self, client_id: str, callback: EventCallback) -> Subscription:
        return self._relay.subscribe(client_id, callback)

    def snapshot(self, client_id: str) -> ProgressSnapshot | None:
        return self._relay.snapshot(client_id)
