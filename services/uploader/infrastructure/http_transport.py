from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from services.uploader.domain.errors import ChunkTransmissionError, UploadRejected
from services.uploader.domain.session import UploadTarget

LOGGER = logging.getLogger(__name__)

# Conflicts mean another assembler instance still owns the upload; worth retrying.
RETRYABLE_STATUSES = frozenset({408, 409, 425, 429})


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class HttpChunkTransport:
    """Multipart POSTs to ``/v1/uploads/{resource}/{entityId}/{field}``."""

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def create(cls, base_url: str, *, timeout_seconds: float = 120.0) -> "HttpChunkTransport":
        return cls(httpx.Client(base_url=base_url, timeout=timeout_seconds))

    def close(self) -> None:
        self._client.close()

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
    ) -> Mapping[str, Any]:
        params: dict[str, Any] = {
            "clientId": client_id,
            "originalName": file_name,
            "intent": target.intent,
        }
        if target.title:
            params["title"] = target.title
        if upload_id is not None:
            params.update(
                uploadId=upload_id, chunkIndex=chunk_index, totalChunks=total_chunks
            )
        path = f"/v1/uploads/{target.resource}/{target.item_id}/{target.field_name}"
        files = {"file": (file_name, data, content_type or "application/octet-stream")}
        try:
            response = self._client.post(path, params=params, files=files)
        except httpx.HTTPError as exc:
            raise ChunkTransmissionError(f"Request to {path} failed: {exc}") from exc

        if response.status_code >= 500 or response.status_code in RETRYABLE_STATUSES:
            raise ChunkTransmissionError(
                f"Server answered {response.status_code}: {_detail(response)}"
            )
        if response.status_code >= 400:
            raise UploadRejected(response.status_code, _detail(response))
        try:
            return response.json()
        except ValueError as exc:
            raise ChunkTransmissionError(f"Unreadable response from {path}") from exc
