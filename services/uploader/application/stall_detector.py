from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from services.uploader.application.reconcile import SessionTracker

logger = logging.getLogger(__name__)

DEFAULT_STALL_TIMEOUT_SECONDS = 15 * 60
DEFAULT_CHECK_INTERVAL_SECONDS = 30.0


class StallDetector:
    """Fails processing uploads that have gone quiet for too long."""

    def __init__(
        self,
        tracker: SessionTracker,
        *,
        timeout_seconds: float = DEFAULT_STALL_TIMEOUT_SECONDS,
        interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tracker = tracker
        self._timeout = timeout_seconds
        self._interval = interval_seconds
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def check(self) -> list[str]:
        """Run one sweep and return the client ids that were failed by it."""
        now = self._clock()
        stalled = []
        for session in self._tracker.processing():
            if now - self._tracker.last_heard(session) <= self._timeout:
                continue
            if self._tracker.stall(session.client_id):
                stalled.append(session.client_id)
        return stalled

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="upload-stall-detector", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.check()
            except Exception as exc:
                logger.error("Stall check failed: %s", exc)
