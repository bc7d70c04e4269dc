from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Mapping

from media_pipeline.progress.events import (
    STAGE_MESSAGES,
    EventKind,
    ProgressEvent,
    Stage,
    stage_index,
)

from services.uploader.domain.errors import InvalidSessionTransition

STALL_MESSAGE = "Processing stalled: no progress received for 15 minutes"


class UploadStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (UploadStatus.DONE, UploadStatus.ERROR)


_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.IDLE: frozenset({UploadStatus.UPLOADING}),
    UploadStatus.UPLOADING: frozenset(
        {UploadStatus.PROCESSING, UploadStatus.DONE, UploadStatus.ERROR}
    ),
    UploadStatus.PROCESSING: frozenset({UploadStatus.DONE, UploadStatus.ERROR}),
    UploadStatus.DONE: frozenset(),
    UploadStatus.ERROR: frozenset(),
}


@dataclass(frozen=True)
class UploadTarget:
    resource: str
    item_id: str
    field_name: str
    title: str | None = None
    intent: Literal["attach", "replace"] = "attach"

    @property
    def key(self) -> str:
        return f"{self.resource}:{self.item_id}:{self.field_name}"


@dataclass(frozen=True)
class FileFingerprint:
    name: str
    size: int
    modified_ms: int

    @classmethod
    def of(cls, path: Path) -> "FileFingerprint":
        stat = path.stat()
        return cls(name=path.name, size=stat.st_size, modified_ms=int(stat.st_mtime * 1000))

    def __str__(self) -> str:
        return f"{self.name}:{self.size}:{self.modified_ms}"


@dataclass(frozen=True)
class ResumeState:
    upload_id: str
    chunk_size: int
    total_chunks: int
    next_chunk_index: int
    file_fingerprint: str
    updated_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "chunkSize": self.chunk_size,
            "totalChunks": self.total_chunks,
            "nextChunkIndex": self.next_chunk_index,
            "fileFingerprint": self.file_fingerprint,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ResumeState":
        return cls(
            upload_id=str(payload["uploadId"]),
            chunk_size=int(payload["chunkSize"]),
            total_chunks=int(payload["totalChunks"]),
            next_chunk_index=int(payload["nextChunkIndex"]),
            file_fingerprint=str(payload["fileFingerprint"]),
            updated_at=float(payload["updatedAt"]),
        )


@dataclass(frozen=True)
class UploadSession:
    """Client-side view of one upload, from the first chunk to the final outcome."""

    client_id: str
    target: UploadTarget
    file_name: str
    file_size: int
    file_path: str | None = None
    status: UploadStatus = UploadStatus.IDLE
    stage: Stage | None = None
    progress: int = 0
    message: str | None = None
    updated_at: float = 0.0
    started_at: float = 0.0
    item: Mapping[str, Any] | None = None

    def transition(self, status: UploadStatus, *, at: float, **changes: Any) -> "UploadSession":
        if status is not self.status and status not in _TRANSITIONS[self.status]:
            raise InvalidSessionTransition(
                f"Upload {self.client_id} cannot go from {self.status.value} to {status.value}"
            )
        if self.status.terminal:
            raise InvalidSessionTransition(
                f"Upload {self.client_id} already finished as {self.status.value}"
            )
        if status is not UploadStatus.PROCESSING:
            changes.setdefault("stage", None)
        return replace(self, status=status, updated_at=at, **changes)

    def apply_event(self, event: ProgressEvent, *, at: float) -> "UploadSession | None":
        """Fold a relayed event into the session; ``None`` when it changes nothing."""
        if self.status is not UploadStatus.PROCESSING:
            return None
        if event.kind is EventKind.STAGE:
            if event.stage is None or stage_index(event.stage) <= stage_index(self.stage):
                return None
            return self.transition(
                UploadStatus.PROCESSING,
                at=at,
                stage=event.stage,
                progress=0,
                message=STAGE_MESSAGES.get(event.stage),
            )
        if event.kind is EventKind.PROGRESS:
            if event.percent is None or event.percent <= self.progress:
                return None
            return self.transition(
                UploadStatus.PROCESSING, at=at, stage=self.stage, progress=event.percent
            )
        if event.kind is EventKind.DONE:
            return self.transition(
                UploadStatus.DONE, at=at, progress=100, message="Processing complete"
            )
        return self.transition(
            UploadStatus.ERROR, at=at, message=event.message or "Processing failed"
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "clientId": self.client_id,
            "resource": self.target.resource,
            "itemId": self.target.item_id,
            "fieldName": self.target.field_name,
            "title": self.target.title,
            "intent": self.target.intent,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "filePath": self.file_path,
            "startedAt": self.started_at,
            "snapshot": {
                "status": self.status.value,
                "progress": self.progress,
                "stage": self.stage.value if self.stage else None,
                "message": self.message,
                "updatedAt": self.updated_at,
            },
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "UploadSession":
        snapshot = record.get("snapshot") or {}
        stage = snapshot.get("stage")
        return cls(
            client_id=str(record["clientId"]),
            target=UploadTarget(
                resource=str(record["resource"]),
                item_id=str(record["itemId"]),
                field_name=str(record["fieldName"]),
                title=record.get("title"),
                intent=record.get("intent") or "attach",
            ),
            file_name=str(record["fileName"]),
            file_size=int(record.get("fileSize") or 0),
            file_path=record.get("filePath"),
            status=UploadStatus(snapshot.get("status") or "idle"),
            stage=Stage(stage) if stage else None,
            progress=int(snapshot.get("progress") or 0),
            message=snapshot.get("message"),
            updated_at=float(snapshot.get("updatedAt") or 0.0),
            started_at=float(record.get("startedAt") or 0.0),
        )


@dataclass(frozen=True)
class UploadOutcome:
    client_id: str
    status: Literal["done", "processing"]
    upload_id: str | None = None
    item: Mapping[str, Any] | None = None

    @property
    def processing(self) -> bool:
        return self.status == "processing"

    @classmethod
    def from_response(cls, client_id: str, response: Mapping[str, Any]) -> "UploadOutcome":
        """The final chunk's response decides between background and synchronous completion."""
        if response.get("status") == "processing":
            return cls(client_id=client_id, status="processing", upload_id=response.get("uploadId"))
        return cls(
            client_id=client_id,
            status="done",
            upload_id=response.get("uploadId"),
            item=response.get("item"),
        )


@dataclass(frozen=True)
class Notification:
    kind: Literal["success", "error"]
    client_id: str
    title: str
    message: str
    elapsed_seconds: float
    dismissible: bool
    auto_dismiss_seconds: float | None = None
