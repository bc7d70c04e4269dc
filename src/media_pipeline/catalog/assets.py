"""Attachment of placed artifacts to (resource, entity, field) slots."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, String

from media_pipeline.catalog.db import Base

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredAsset:
    resource: str
    owner_entity_id: str
    field_name: str
    kind: str
    path: str
    url: str
    content_type: str | None = None
    size: int | None = None
    original_name: str | None = None
    thumbnail_path: str | None = None
    thumbnail_url: str | None = None
    preview_sprite_path: str | None = None
    preview_sprite_url: str | None = None
    preview_vtt_path: str | None = None
    preview_vtt_url: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def paths(self) -> list[str]:
        return [
            path
            for path in (
                self.path,
                self.thumbnail_path,
                self.preview_sprite_path,
                self.preview_vtt_path,
            )
            if path
        ]

    def to_item(self) -> dict[str, object]:
        return {
            "resource": self.resource,
            "entityId": self.owner_entity_id,
            "field": self.field_name,
            "kind": self.kind,
            "path": self.path,
            "url": self.url,
            "contentType": self.content_type,
            "size": self.size,
            "originalName": self.original_name,
            "thumbnailUrl": self.thumbnail_url,
            "previewSpriteUrl": self.preview_sprite_url,
            "previewVttUrl": self.preview_vtt_url,
        }


class AssetRecord(Base):
    __tablename__ = "media_assets"

    resource = Column(String, primary_key=True)
    owner_entity_id = Column(String, primary_key=True)
    field_name = Column(String, primary_key=True)
    kind = Column(String, nullable=False)
    path = Column(String, nullable=False)
    url = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    size = Column(BigInteger, nullable=True)
    original_name = Column(String, nullable=True)
    thumbnail_path = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    preview_sprite_path = Column(String, nullable=True)
    preview_sprite_url = Column(String, nullable=True)
    preview_vtt_path = Column(String, nullable=True)
    preview_vtt_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


_COLUMNS = (
    "kind",
    "path",
    "url",
    "content_type",
    "size",
    "original_name",
    "thumbnail_path",
    "thumbnail_url",
    "preview_sprite_path",
    "preview_sprite_url",
    "preview_vtt_path",
    "preview_vtt_url",
    "created_at",
)


def _to_domain(record: AssetRecord) -> StoredAsset:
    return StoredAsset(
        resource=record.resource,
        owner_entity_id=record.owner_entity_id,
        field_name=record.field_name,
        **{name: getattr(record, name) for name in _COLUMNS},
    )


class SqlAlchemyAssetRepository:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def get(self, resource: str, owner_entity_id: str, field_name: str) -> StoredAsset | None:
        with self._session_factory() as db:
            record = db.get(AssetRecord, (resource, str(owner_entity_id), field_name))
            if record is None:
                return None
            return _to_domain(record)

    def attach(self, asset: StoredAsset) -> StoredAsset | None:
        """Store ``asset`` in its slot and return the asset it replaced, if any."""
        key = (asset.resource, str(asset.owner_entity_id), asset.field_name)
        with self._session_factory() as db:
            record = db.get(AssetRecord, key)
            previous = _to_domain(record) if record is not None else None
            if record is None:
                record = AssetRecord(
                    resource=asset.resource,
                    owner_entity_id=str(asset.owner_entity_id),
                    field_name=asset.field_name,
                )
                db.add(record)
            for name in _COLUMNS:
                setattr(record, name, getattr(asset, name))
            db.commit()
        return previous


def delete_asset_files(storage, asset: StoredAsset | None, *, keep: StoredAsset | None = None) -> None:
    """Remove the files of a replaced asset. Failures are logged, not raised."""
    if asset is None:
        return
    retained = set(keep.paths()) if keep is not None else set()
    for path in asset.paths():
        if path in retained:
            continue
        try:
            storage.delete(path)
        except Exception as exc:
            LOGGER.warning("Failed to delete stale asset file %s: %s", path, exc)
