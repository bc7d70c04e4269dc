from __future__ import annotations

from pathlib import Path
from typing import Protocol

from media_pipeline.catalog.assets import StoredAsset
from media_pipeline.jobs import ProcessingJob


class IdProvider(Protocol):
    def generate(self) -> str: ...


class UploadLease(Protocol):
    def acquire(self, key: str, owner: str, ttl_seconds: int) -> bool: ...

    def release(self, key: str, owner: str) -> None: ...


class JobDispatcher(Protocol):
    def dispatch(self, job: ProcessingJob) -> str: ...


class AssetRepository(Protocol):
    def get(self, resource: str, owner_entity_id: str, field_name: str) -> StoredAsset | None: ...

    def attach(self, asset: StoredAsset) -> StoredAsset | None: ...


class EntityMetadata(Protocol):
    def get_slug(self, resource: str, entity_id: str | int | None) -> str | None: ...

    def get_title(self, resource: str, entity_id: str | int | None) -> str | None: ...


class ImageEncoder(Protocol):
    def encode(self, source: Path) -> tuple[bytes, bytes]:
        """Return (normalized image, thumbnail) bytes."""
        ...
