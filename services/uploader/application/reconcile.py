from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from media_pipeline.progress.events import ProgressEvent
from media_pipeline.progress.relay import Subscription

from services.uploader.application.interfaces import ProgressFeed
from services.uploader.application.session_store import UploadStateStore
from services.uploader.domain.errors import StallTimeout
from services.uploader.domain.session import (
    STALL_MESSAGE,
    Notification,
    UploadOutcome,
    UploadSession,
    UploadStatus,
    UploadTarget,
)

logger = logging.getLogger(__name__)

SessionCallback = Callable[[UploadSession], None]
NotificationCallback = Callable[[Notification], None]

DEFAULT_SUCCESS_DISMISS_SECONDS = 1.5


class _Listener:
    def __init__(self, tracker: "SessionTracker", callback: Callable, *, notifications: bool) -> None:
        self._tracker = tracker
        self.callback = callback
        self.notifications = notifications

    def close(self) -> None:
        self._tracker._remove_listener(self)


class SessionTracker:
    """Owns the live state of every upload this client knows about.

    Each change is written to the durable store before listeners hear about
    it, so a reload always replays at least what was last shown. Processing
    sessions are attached to the progress feed until they reach a terminal
    state, at which point the durable record is dropped and a notification
    goes out exactly once.
    """

    def __init__(
        self,
        *,
        state: UploadStateStore,
        feed: ProgressFeed,
        success_dismiss_seconds: float = DEFAULT_SUCCESS_DISMISS_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._state = state
        self._feed = feed
        self._success_dismiss = success_dismiss_seconds
        self._clock = clock
        self._sessions: dict[str, UploadSession] = {}
        self._feeds: dict[str, Subscription] = {}
        self._heard: dict[str, float] = {}
        self._listeners: list[_Listener] = []
        self._lock = threading.RLock()

    def listen(self, callback: SessionCallback) -> Subscription:
        listener = _Listener(self, callback, notifications=False)
        with self._lock:
            self._listeners.append(listener)
        return listener

    def listen_notifications(self, callback: NotificationCallback) -> Subscription:
        listener = _Listener(self, callback, notifications=True)
        with self._lock:
            self._listeners.append(listener)
        return listener

    def get(self, client_id: str) -> UploadSession | None:
        with self._lock:
            return self._sessions.get(client_id)

    def processing(self) -> list[UploadSession]:
        with self._lock:
            return [
                s for s in self._sessions.values() if s.status is UploadStatus.PROCESSING
            ]

    def last_heard(self, session: UploadSession) -> float:
        """When anything was last heard about a session, even a repeated event."""
        with self._lock:
            return max(session.updated_at, self._heard.get(session.client_id, 0.0))

    # Upload lifecycle

    def start(
        self, client_id: str, target: UploadTarget, *, file_name: str, file_size: int,
        file_path: str | None = None,
    ) -> UploadSession:
        now = self._clock()
        session = UploadSession(
            client_id=client_id,
            target=target,
            file_name=file_name,
            file_size=file_size,
            file_path=file_path,
            started_at=now,
        ).transition(UploadStatus.UPLOADING, at=now, message="Preparing upload...")
        self._commit(session)
        return session

    def chunk_progress(self, client_id: str, sent: int, total: int) -> None:
        session = self.get(client_id)
        if session is None or session.status is not UploadStatus.UPLOADING:
            return
        self._commit(
            session.transition(
                UploadStatus.UPLOADING,
                at=self._clock(),
                progress=round(sent / total * 100),
                message=f"Uploading part {sent} of {total}",
            )
        )

    def upload_finished(self, outcome: UploadOutcome) -> UploadSession | None:
        session = self.get(outcome.client_id)
        if session is None or session.status.terminal:
            return session
        now = self._clock()
        if outcome.processing:
            updated = session.transition(
                UploadStatus.PROCESSING, at=now, progress=0, message="Processing..."
            )
            self._commit(updated)
            self.watch(outcome.client_id)
            return self.get(outcome.client_id)
        updated = session.transition(
            UploadStatus.DONE, at=now, progress=100, message="Upload complete", item=outcome.item
        )
        self._commit(updated)
        return updated

    def upload_failed(self, client_id: str, error: Exception) -> None:
        self._fail(client_id, str(error) or "Upload failed")

    def stall(self, client_id: str) -> bool:
        """Force a processing session into error. ``True`` if this call did it."""
        with self._lock:
            session = self._sessions.get(client_id)
            if session is None or session.status is not UploadStatus.PROCESSING:
                return False
            logger.warning("Upload %s stalled during %s", client_id, session.stage)
            self.upload_failed(client_id, StallTimeout(STALL_MESSAGE))
            return True

    def _fail(self, client_id: str, message: str) -> None:
        session = self.get(client_id)
        if session is None or session.status.terminal:
            return
        self._commit(session.transition(UploadStatus.ERROR, at=self._clock(), message=message))

    # Progress feed

    def apply_event(self, event: ProgressEvent) -> None:
        with self._lock:
            session = self._sessions.get(event.client_id)
            if session is None:
                return
            now = self._clock()
            if session.status is UploadStatus.PROCESSING:
                self._heard[event.client_id] = now
            updated = session.apply_event(event, at=now)
            if updated is not None:
                self._commit(updated)

    def watch(self, client_id: str) -> None:
        """Attach a processing session to the feed and catch up from the snapshot."""
        with self._lock:
            session = self._sessions.get(client_id)
            if (
                session is None
                or session.status is not UploadStatus.PROCESSING
                or client_id in self._feeds
            ):
                return
            self._feeds[client_id] = self._feed.subscribe(client_id, self.apply_event)
        snapshot = self._feed.snapshot(client_id)
        if snapshot is not None:
            for event in snapshot.as_events():
                self.apply_event(event)

    def restore(self, target_key: str) -> UploadSession | None:
        """Reload a slot's durable record, e.g. after the process restarted."""
        with self._lock:
            for session in self._sessions.values():
                if session.target.key == target_key and not session.status.terminal:
                    return session
            session = self._state.load_session(target_key)
            if session is None:
                return None
            self._sessions[session.client_id] = session
        if session.status is UploadStatus.PROCESSING:
            self.watch(session.client_id)
        return self.get(session.client_id)

    # Internals

    def _commit(self, session: UploadSession) -> None:
        with self._lock:
            previous = self._sessions.get(session.client_id)
            if previous is not None and previous.status.terminal:
                return
            self._sessions[session.client_id] = session
            if session.status.terminal:
                self._state.clear(session.target.key, session.client_id)
                feed = self._feeds.pop(session.client_id, None)
                self._heard.pop(session.client_id, None)
            else:
                self._state.save_session(session)
                feed = None
            listeners = list(self._listeners)
        if feed is not None:
            feed.close()
        notification = self._notification(session) if session.status.terminal else None
        for listener in listeners:
            payload = notification if listener.notifications else session
            if payload is None:
                continue
            try:
                listener.callback(payload)
            except Exception as exc:
                logger.error("Upload listener failed for %s: %s", session.client_id, exc)

    def _notification(self, session: UploadSession) -> Notification:
        elapsed = max(0.0, session.updated_at - session.started_at)
        if session.status is UploadStatus.DONE:
            return Notification(
                kind="success",
                client_id=session.client_id,
                title="Upload complete",
                message=f"{session.file_name} is ready",
                elapsed_seconds=elapsed,
                dismissible=True,
                auto_dismiss_seconds=self._success_dismiss,
            )
        return Notification(
            kind="error",
            client_id=session.client_id,
            title="Upload failed",
            message=session.message or "Upload failed",
            elapsed_seconds=elapsed,
            dismissible=True,
        )

    def _remove_listener(self, listener: _Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def close(self) -> None:
        with self._lock:
            feeds = list(self._feeds.values())
            self._feeds.clear()
            self._listeners.clear()
        for feed in feeds:
            feed.close()


class SessionView:
    """One on-screen consumer of a single upload's state.

    ``mount`` replays the last known state at once and then follows live
    changes; ``unmount`` only detaches the view.
    """

    def __init__(self, tracker: SessionTracker, client_id: str, callback: SessionCallback) -> None:
        self._tracker = tracker
        self.client_id = client_id
        self._callback = callback
        self._listener: Subscription | None = None

    def mount(self) -> UploadSession | None:
        if self._listener is None:
            self._listener = self._tracker.listen(self._on_change)
        session = self._tracker.get(self.client_id)
        if session is not None:
            self._callback(session)
            if session.status is UploadStatus.PROCESSING:
                self._tracker.watch(self.client_id)
        return self._tracker.get(self.client_id)

    def unmount(self) -> None:
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    close = unmount

    @property
    def mounted(self) -> bool:
        return self._listener is not None

    def _on_change(self, session: UploadSession) -> None:
        if session.client_id == self.client_id:
            self._callback(session)
