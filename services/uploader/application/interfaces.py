from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Mapping, Protocol

from media_pipeline.progress.events import ProgressSnapshot
from media_pipeline.progress.relay import EventCallback, Subscription

from services.uploader.domain.session import UploadTarget


class ChunkTransport(Protocol):
    """Sends one request to the upload endpoint.

    Retryable failures raise ``ChunkTransmissionError``; refusals raise
    ``UploadRejected``.
    """

    def send(
        self,
        target: UploadTarget,
        data: bytes,
        *,
        file_name: str,
        content_type: str | None,
        client_id: str,
        upload_id: str | None = None,
        chunk_index: int | None = None,
        total_chunks: int | None = None,
    ) -> Mapping[str, Any]: ...


class KeyValueStore(Protocol):
    def get(self, key: str) -> Mapping[str, Any] | None: ...

    def set(self, key: str, value: Mapping[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...

    def transaction(self) -> AbstractContextManager[None]: ...


class ProgressFeed(Protocol):
    def subscribe(self, client_id: str, callback: EventCallback) -> Subscription: ...

    def snapshot(self, client_id: str) -> ProgressSnapshot | None: ...
