from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from media_pipeline.catalog.assets import StoredAsset, delete_asset_files
from media_pipeline.media.classifier import MediaKind, is_vector_image
from media_pipeline.media.naming import Placement, PlacementResolver
from media_pipeline.storage import Storage

from services.intake.application.interfaces import (
    AssetRepository,
    EntityMetadata,
    ImageEncoder,
)
from services.intake.domain.upload import UploadTarget

logger = logging.getLogger(__name__)

THUMBNAIL_FOLDER = "thumbs"


class PlaceAssetUseCase:
    """Store a fully received file in its public folder and attach it."""

    def __init__(
        self,
        *,
        storage: Storage,
        assets: AssetRepository,
        resolver: PlacementResolver,
        image_encoder: ImageEncoder,
        metadata: EntityMetadata | None = None,
    ) -> None:
        self._storage = storage
        self._assets = assets
        self._resolver = resolver
        self._image_encoder = image_encoder
        self._metadata = metadata

    def placement_for(
        self,
        kind: MediaKind,
        target: UploadTarget,
        original_name: str,
        content_type: str | None = None,
    ) -> Placement:
        owner_slug = None
        title = target.title
        if self._metadata is not None:
            owner_slug = self._metadata.get_slug(target.resource, target.owner_entity_id)
            title = title or self._metadata.get_title(
                target.resource, target.owner_entity_id
            )
        return self._resolver.resolve(
            kind,
            resource=target.resource,
            owner_entity_id=target.owner_entity_id,
            field_hint=target.field_name,
            is_edit=target.is_edit,
            owner_slug=owner_slug,
            title_hint=title,
            fallback_name=PurePosixPath(original_name).stem,
            original_name=original_name,
            content_type=content_type,
        )

    def execute(
        self,
        *,
        source: Path,
        kind: MediaKind,
        target: UploadTarget,
        original_name: str,
        content_type: str | None,
        size: int,
    ) -> StoredAsset:
        placement = self.placement_for(kind, target, original_name, content_type)
        thumbnail_path = None
        if kind is MediaKind.IMAGE and is_vector_image(content_type, original_name):
            self._storage.upload(source.as_posix(), placement.path)
            content_type = "image/svg+xml"
        elif kind is MediaKind.IMAGE:
            image, thumbnail = self._image_encoder.encode(source)
            self._storage.write(placement.path, image)
            thumbnail_path = (
                f"{placement.folder_path}/{THUMBNAIL_FOLDER}/{placement.file_name}"
            )
            self._storage.write(thumbnail_path, thumbnail)
            content_type = "image/webp"
            size = len(image)
        else:
            self._storage.upload(source.as_posix(), placement.path)

        asset = StoredAsset(
            resource=target.resource,
            owner_entity_id=str(target.owner_entity_id),
            field_name=target.field_name,
            kind=kind.value,
            path=placement.path,
            url=self._storage.public_url(placement.path),
            content_type=content_type,
            size=size,
            original_name=original_name,
            thumbnail_path=thumbnail_path,
            thumbnail_url=(
                self._storage.public_url(thumbnail_path) if thumbnail_path else None
            ),
        )
        previous = self._assets.attach(asset)
        delete_asset_files(self._storage, previous, keep=asset)
        logger.info(
            "Placed %s for %s/%s/%s at %s",
            kind.value,
            target.resource,
            target.owner_entity_id,
            target.field_name,
            placement.path,
        )
        return asset
