from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping


@dataclass(frozen=True)
class UploadTarget:
    resource: str
    owner_entity_id: str
    field_name: str
    is_edit: bool = False
    title: str | None = None


@dataclass(frozen=True)
class UploadManifest:
    upload_id: str
    total_chunks: int
    original_name: str
    content_type: str | None
    client_id: str
    created_at: float
    updated_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "totalChunks": self.total_chunks,
            "originalName": self.original_name,
            "contentType": self.content_type,
            "clientId": self.client_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UploadManifest":
        return cls(
            upload_id=str(payload["uploadId"]),
            total_chunks=int(payload["totalChunks"]),
            original_name=str(payload["originalName"]),
            content_type=payload.get("contentType"),
            client_id=str(payload["clientId"]),
            created_at=float(payload["createdAt"]),
            updated_at=float(payload["updatedAt"]),
        )


@dataclass(frozen=True)
class AssemblyResult:
    status: Literal["received", "processing", "ok"]
    upload_id: str
    client_id: str
    chunk_index: int | None = None
    received_chunks: int | None = None
    item: Mapping[str, Any] | None = None
    job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "uploadId": self.upload_id,
            "clientId": self.client_id,
        }
        if self.chunk_index is not None:
            payload["chunkIndex"] = self.chunk_index
        if self.received_chunks is not None:
            payload["receivedChunks"] = self.received_chunks
        if self.item is not None:
            payload["item"] = dict(self.item)
        if self.job_id is not None:
            payload["jobId"] = self.job_id
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AssemblyResult":
        return cls(
            status=payload["status"],
            upload_id=str(payload["uploadId"]),
            client_id=str(payload["clientId"]),
            chunk_index=payload.get("chunkIndex"),
            received_chunks=payload.get("receivedChunks"),
            item=payload.get("item"),
            job_id=payload.get("jobId"),
        )
