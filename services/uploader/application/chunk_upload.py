from __future__ import annotations

import logging
import math
import mimetypes
import time
from pathlib import Path
from typing import Any, Callable, Mapping

from media_pipeline.media.classifier import MediaClassifier

from services.uploader.application.interfaces import ChunkTransport
from services.uploader.application.session_store import UploadStateStore
from services.uploader.domain.errors import ChunkTransmissionError, StructuralUploadError
from services.uploader.domain.session import (
    FileFingerprint,
    ResumeState,
    UploadOutcome,
    UploadTarget,
)

logger = logging.getLogger(__name__)

ChunkProgressCallback = Callable[[int, int], None]


class ChunkUploadManager:
    """Sequential, resumable transfer of one file to the upload endpoint.

    Files that fit in one chunk go out as a single direct request. Larger
    files are split; the cursor is persisted after every acknowledged chunk
    so a new process can continue from where the last one stopped. When a
    chunk keeps failing the whole transfer restarts once with the minimum
    chunk size under a new upload id.
    """

    def __init__(
        self,
        *,
        transport: ChunkTransport,
        state: UploadStateStore,
        classifier: MediaClassifier,
        ids: Callable[[], str],
        chunk_size: int,
        min_chunk_size: int,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if min_chunk_size <= 0 or chunk_size < min_chunk_size:
            raise ValueError("chunk_size must be at least min_chunk_size, which must be positive")
        self._transport = transport
        self._state = state
        self._classifier = classifier
        self._ids = ids
        self._chunk_size = chunk_size
        self._min_chunk_size = min_chunk_size
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._clock = clock

    def admit(self, path: Path, content_type: str | None = None) -> tuple[int, str | None]:
        """Apply the type and size policy before a single byte leaves the machine."""
        size = Path(path).stat().st_size
        content_type = content_type or mimetypes.guess_type(Path(path).name)[0]
        self._classifier.admit(
            content_type=content_type,
            file_name=Path(path).name,
            size=size,
            require_concrete=False,
        )
        return size, content_type

    def upload(
        self,
        path: Path,
        target: UploadTarget,
        *,
        client_id: str,
        owner: str,
        content_type: str | None = None,
        on_progress: ChunkProgressCallback | None = None,
    ) -> UploadOutcome:
        path = Path(path)
        size, content_type = self.admit(path, content_type)

        self._state.acquire_lease(target.key, owner)
        try:
            if size <= self._chunk_size:
                response = self._send_direct(path, target, client_id, content_type)
                if on_progress is not None:
                    on_progress(1, 1)
            else:
                response = self._send_chunked_with_degrade(
                    path, target, client_id, owner, content_type, size, on_progress
                )
        finally:
            self._state.release_lease(target.key, owner)
        outcome = UploadOutcome.from_response(client_id, response)
        logger.info(
            "Uploaded %s for %s (%s)", path.name, target.key, outcome.status
        )
        return outcome

    def _send_direct(
        self, path: Path, target: UploadTarget, client_id: str, content_type: str | None
    ) -> Mapping[str, Any]:
        data = path.read_bytes()
        return self._with_retry(
            lambda: self._transport.send(
                target,
                data,
                file_name=path.name,
                content_type=content_type,
                client_id=client_id,
            ),
            description=f"direct upload of {path.name}",
        )

    def _send_chunked_with_degrade(
        self,
        path: Path,
        target: UploadTarget,
        client_id: str,
        owner: str,
        content_type: str | None,
        size: int,
        on_progress: ChunkProgressCallback | None,
    ) -> Mapping[str, Any]:
        try:
            return self._send_chunked(
                path, target, client_id, owner, content_type, size,
                self._chunk_size, on_progress, resume=True,
            )
        except StructuralUploadError as exc:
            if self._chunk_size <= self._min_chunk_size:
                raise
            logger.warning(
                "Chunked upload of %s failed (%s); restarting with %s byte chunks",
                path.name,
                exc,
                self._min_chunk_size,
            )
            self._state.discard_resume(target.key)
            return self._send_chunked(
                path, target, client_id, owner, content_type, size,
                self._min_chunk_size, on_progress, resume=False,
            )

    def _send_chunked(
        self,
        path: Path,
        target: UploadTarget,
        client_id: str,
        owner: str,
        content_type: str | None,
        size: int,
        chunk_size: int,
        on_progress: ChunkProgressCallback | None,
        *,
        resume: bool,
    ) -> Mapping[str, Any]:
        total_chunks = math.ceil(size / chunk_size)
        fingerprint = str(FileFingerprint.of(path))
        cursor = None
        if resume:
            cursor = self._state.load_resume(
                target.key,
                fingerprint=fingerprint,
                chunk_size=chunk_size,
                total_chunks=total_chunks,
            )
        if cursor is not None:
            upload_id, start = cursor.upload_id, cursor.next_chunk_index
            logger.info(
                "Resuming upload %s of %s at chunk %s/%s",
                upload_id, path.name, start + 1, total_chunks,
            )
        else:
            upload_id, start = self._ids(), 0

        response: Mapping[str, Any] = {}
        with path.open("rb") as handle:
            for index in range(start, total_chunks):
                handle.seek(index * chunk_size)
                data = handle.read(chunk_size)
                response = self._with_retry(
                    lambda: self._transport.send(
                        target,
                        data,
                        file_name=path.name,
                        content_type=content_type,
                        client_id=client_id,
                        upload_id=upload_id,
                        chunk_index=index,
                        total_chunks=total_chunks,
                    ),
                    description=f"chunk {index + 1}/{total_chunks} of {upload_id}",
                )
                if index + 1 < total_chunks:
                    self._state.save_resume(
                        target.key,
                        ResumeState(
                            upload_id=upload_id,
                            chunk_size=chunk_size,
                            total_chunks=total_chunks,
                            next_chunk_index=index + 1,
                            file_fingerprint=fingerprint,
                            updated_at=self._clock(),
                        ),
                    )
                    self._state.renew_lease(target.key, owner)
                if on_progress is not None:
                    on_progress(index + 1, total_chunks)

        self._state.discard_resume(target.key)
        return response

    def _with_retry(
        self, send: Callable[[], Mapping[str, Any]], *, description: str
    ) -> Mapping[str, Any]:
        last_error: ChunkTransmissionError | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return send()
            except ChunkTransmissionError as exc:
                last_error = exc
                logger.warning(
                    "Attempt %s/%s for %s failed: %s",
                    attempt, self._max_attempts, description, exc,
                )
                if attempt < self._max_attempts:
                    self._sleep(attempt * self._backoff)
        raise StructuralUploadError(
            f"Giving up on {description} after {self._max_attempts} attempts",
            last_error,
        )
