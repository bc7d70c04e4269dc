"""Hand-off record between the upload assembler and the processing worker."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

from media_pipeline.media.naming import Placement

THUMBNAIL_SUFFIX = "-thumb.jpg"
SPRITE_SUFFIX = "-sprite.jpg"
PREVIEW_VTT_SUFFIX = "-preview.vtt"


@dataclass(frozen=True)
class ProcessingJob:
    job_id: str
    client_id: str
    input_path: str
    original_name: str
    size: int
    content_type: str | None
    resource: str
    owner_entity_id: str
    field_name: str
    folder_path: str
    file_name: str
    quality: str = "medium"

    @property
    def placement(self) -> Placement:
        return Placement(file_name=self.file_name, folder_path=self.folder_path)

    @property
    def output_path(self) -> str:
        return self.placement.path

    @property
    def thumbnail_path(self) -> str:
        return self.placement.derived(THUMBNAIL_SUFFIX)

    @property
    def sprite_path(self) -> str:
        return self.placement.derived(SPRITE_SUFFIX)

    @property
    def preview_vtt_path(self) -> str:
        return self.placement.derived(PREVIEW_VTT_SUFFIX)

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProcessingJob":
        return cls(
            job_id=str(payload["job_id"]),
            client_id=str(payload["client_id"]),
            input_path=str(payload["input_path"]),
            original_name=str(payload["original_name"]),
            size=int(payload["size"]),
            content_type=payload.get("content_type"),
            resource=str(payload["resource"]),
            owner_entity_id=str(payload["owner_entity_id"]),
            field_name=str(payload["field_name"]),
            folder_path=str(payload["folder_path"]),
            file_name=str(payload["file_name"]),
            quality=str(payload.get("quality") or "medium"),
        )
