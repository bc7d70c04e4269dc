"""Client entry point used by admin screens to upload media for an entity field."""

from __future__ import annotations

import logging
import secrets
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from media_pipeline.media.classifier import MediaClassifier
from media_pipeline.progress.relay import Subscription

from .application.chunk_upload import ChunkUploadManager
from .application.reconcile import NotificationCallback, SessionCallback, SessionTracker, SessionView
from .application.session_store import UploadStateStore
from .application.stall_detector import StallDetector
from .config import UploaderConfig, load_config
from .domain.errors import UploadInProgress
from .domain.session import UploadOutcome, UploadStatus, UploadTarget
from .infrastructure.http_transport import HttpChunkTransport
from .infrastructure.progress_feed import HttpProgressFeed
from .infrastructure.state_store import JsonFileStore

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return secrets.token_hex(12)


class UploadClient:
    def __init__(
        self,
        *,
        manager: ChunkUploadManager,
        tracker: SessionTracker,
        state: UploadStateStore,
        stall_detector: StallDetector | None = None,
        ids: Callable[[], str] = _new_id,
        owner: str | None = None,
        max_workers: int = 2,
    ) -> None:
        self._manager = manager
        self._tracker = tracker
        self._state = state
        self._stall_detector = stall_detector
        self._ids = ids
        self.owner = owner or ids()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="upload"
        )
        self._futures: dict[str, Future] = {}
        self._closers: list[Callable[[], None]] = []

    @classmethod
    def from_config(cls, config: UploaderConfig | None = None) -> "UploadClient":
        config = config or load_config()
        state = UploadStateStore(
            JsonFileStore(config.state_dir),
            resume_max_age_seconds=config.resume_max_age_hours * 3600,
            lease_ttl_seconds=config.lease_ttl_seconds,
        )
        transport = HttpChunkTransport.create(
            config.api_base_url, timeout_seconds=config.request_timeout_seconds
        )
        feed = HttpProgressFeed.create(
            config.api_base_url, wait_seconds=config.progress_wait_seconds
        )
        tracker = SessionTracker(
            state=state, feed=feed, success_dismiss_seconds=config.success_dismiss_seconds
        )
        manager = ChunkUploadManager(
            transport=transport,
            state=state,
            classifier=MediaClassifier(),
            ids=_new_id,
            chunk_size=config.chunk_bytes,
            min_chunk_size=config.min_chunk_bytes,
            max_attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
        )
        detector = StallDetector(
            tracker,
            timeout_seconds=config.stall_timeout_minutes * 60,
            interval_seconds=config.stall_check_seconds,
        )
        client = cls(manager=manager, tracker=tracker, state=state, stall_detector=detector)
        client._closers.extend([transport.close, feed.close])
        detector.start()
        return client

    def begin_upload(
        self, path: str | Path, target: UploadTarget, *, content_type: str | None = None
    ) -> str:
        """Start an upload in the background and return its client id.

        Type and size are checked and the slot's lease is taken before this
        returns, so those failures reach the caller directly. A slot whose
        previous upload is still uploading or processing is refused until
        that upload ends.
        """
        path = Path(path)
        size, content_type = self._manager.admit(path, content_type)
        active = self._tracker.restore(target.key)
        if active is not None:
            raise UploadInProgress(
                f"Upload {active.client_id} to {target.key} is still {active.status.value}"
            )
        self._state.acquire_lease(target.key, self.owner)
        client_id = self._ids()
        self._tracker.start(
            client_id,
            target,
            file_name=path.name,
            file_size=size,
            file_path=str(path.resolve()),
        )
        self._submit(client_id, path, target, content_type)
        return client_id

    def upload(
        self, path: str | Path, target: UploadTarget, *, content_type: str | None = None
    ) -> UploadOutcome:
        return self.wait(self.begin_upload(path, target, content_type=content_type))

    def wait(self, client_id: str, timeout: float | None = None) -> UploadOutcome:
        """Block until the transfer part of an upload finishes."""
        future = self._futures.get(client_id)
        if future is None:
            raise KeyError(f"No transfer running for {client_id}")
        return future.result(timeout=timeout)

    def subscribe(self, client_id: str, callback: SessionCallback) -> Subscription:
        view = SessionView(self._tracker, client_id, callback)
        view.mount()
        return view

    def notifications(self, callback: NotificationCallback) -> Subscription:
        return self._tracker.listen_notifications(callback)

    def status(self, client_id: str):
        return self._tracker.get(client_id)

    def resume_if_pending(self, resource: str, item_id: str, field_name: str) -> str | None:
        """Pick up an upload recorded for this slot by an earlier run, if any."""
        target_key = UploadTarget(resource, str(item_id), field_name).key
        session = self._tracker.restore(target_key)
        if session is None:
            return None
        if session.status is UploadStatus.UPLOADING and session.client_id not in self._futures:
            self._restart_transfer(session)
        return session.client_id

    def mount(
        self, resource: str, item_id: str, field_name: str, callback: SessionCallback
    ) -> SessionView | None:
        client_id = self.resume_if_pending(resource, item_id, field_name)
        if client_id is None:
            return None
        return self.subscribe(client_id, callback)

    def close(self) -> None:
        if self._stall_detector is not None:
            self._stall_detector.stop()
        self._executor.shutdown(wait=False)
        self._tracker.close()
        for closer in self._closers:
            closer()

    def _restart_transfer(self, session) -> None:
        path = Path(session.file_path) if session.file_path else None
        if path is None or not path.exists():
            logger.warning("Cannot resume %s: source file is gone", session.client_id)
            self._tracker.upload_failed(
                session.client_id, FileNotFoundError("Upload interrupted and the file is no longer available")
            )
            return
        try:
            self._state.acquire_lease(session.target.key, self.owner)
        except UploadInProgress:
            logger.info("Upload %s is still driven by another client", session.client_id)
            return
        logger.info("Resuming transfer of %s for %s", path.name, session.target.key)
        self._submit(session.client_id, path, session.target, None)

    def _submit(
        self, client_id: str, path: Path, target: UploadTarget, content_type: str | None
    ) -> None:
        self._futures[client_id] = self._executor.submit(
            self._transfer, client_id, path, target, content_type
        )

    def _transfer(
        self, client_id: str, path: Path, target: UploadTarget, content_type: str | None
    ) -> UploadOutcome:
        try:
            outcome = self._manager.upload(
                path,
                target,
                client_id=client_id,
                owner=self.owner,
                content_type=content_type,
                on_progress=lambda sent, total: self._tracker.chunk_progress(
                    client_id, sent, total
                ),
            )
        except Exception as exc:
            logger.error("Upload %s failed: %s", client_id, exc)
            self._state.release_lease(target.key, self.owner)
            self._tracker.upload_failed(client_id, exc)
            raise
        self._tracker.upload_finished(outcome)
        return outcome
