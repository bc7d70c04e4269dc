"""Collision-resistant file names and deterministic folders for uploaded media."""

from __future__ import annotations

import re
import threading
import time
import unicodedata
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Mapping

from media_pipeline.media.classifier import MediaKind, is_vector_image

MAX_SLUG_LENGTH = 50
NORMALIZED_IMAGE_EXTENSION = ".webp"
VECTOR_IMAGE_EXTENSION = ".svg"
DEFAULT_VIDEO_EXTENSION = ".mp4"
DEFAULT_EXTENSION = ".bin"

BASE_FOLDERS: dict[MediaKind, str] = {
    MediaKind.IMAGE: "images",
    MediaKind.VIDEO: "uploads/media",
    MediaKind.AUDIO: "uploads/audio",
    MediaKind.DOCUMENT: "uploads/docs",
    MediaKind.OTHER: "uploads/files",
}

DEFAULT_RESOURCE_FOLDERS: dict[str, str] = {
    "product": "products",
    "product_image": "product-images",
    "user": "users",
    "course": "courses",
    "lesson": "lessons",
    "brand": "brands",
    "category": "categories",
}


class NamingResolutionError(ValueError):
    """Raised when there is nothing to derive a file name from."""


def slugify(value: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    ascii_only = normalized.encode("ascii", "ignore").decode("ascii").lower()
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_only).strip("-")
    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")
    return slug


@dataclass(frozen=True)
class Placement:
    file_name: str
    folder_path: str

    @property
    def path(self) -> str:
        return f"{self.folder_path}/{self.file_name}"

    @property
    def stem(self) -> str:
        return PurePosixPath(self.file_name).stem

    def derived(self, suffix: str) -> str:
        """Path of a derived asset next to the main artifact."""
        return f"{self.folder_path}/{self.stem}{suffix}"


class MonotonicMillis:
    """Millisecond timestamps that never repeat within one process."""

    def __init__(self, now: Callable[[], float] = time.time) -> None:
        self._now = now
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            current = int(self._now() * 1000)
            if current <= self._last:
                current = self._last + 1
            self._last = current
            return current


@dataclass
class PlacementResolver:
    resource_folders: Mapping[str, str] = field(
        default_factory=lambda: dict(DEFAULT_RESOURCE_FOLDERS)
    )
    per_entity_video_resources: frozenset[str] = frozenset({"lesson"})
    timestamp: Callable[[], int] = field(default_factory=MonotonicMillis)

    def resolve(
        self,
        kind: MediaKind,
        *,
        resource: str,
        owner_entity_id: str | int | None,
        field_hint: str | None = None,
        is_edit: bool = False,
        owner_slug: str | None = None,
        title_hint: str | None = None,
        fallback_name: str | None = None,
        original_name: str | None = None,
        content_type: str | None = None,
    ) -> Placement:
        base = self._base_name(owner_slug, title_hint, fallback_name, field_hint)
        edit_suffix = "-edit" if is_edit else ""
        extension = self._extension(kind, original_name, content_type)
        file_name = f"{base}{edit_suffix}-{self.timestamp()}{extension}"
        return Placement(
            file_name=file_name,
            folder_path=self.folder_for(kind, resource, owner_entity_id),
        )

    def folder_for(
        self, kind: MediaKind, resource: str, owner_entity_id: str | int | None
    ) -> str:
        resource_folder = self.resource_folders.get(resource) or slugify(resource)
        if not resource_folder:
            raise NamingResolutionError(f"Resource {resource!r} has no usable folder")
        segments = [BASE_FOLDERS[kind], resource_folder]
        if (
            kind is MediaKind.VIDEO
            and resource in self.per_entity_video_resources
            and owner_entity_id not in (None, "")
        ):
            segments.append(f"{resource_folder}-{slugify(str(owner_entity_id))}")
        return "/".join(segments)

    @staticmethod
    def _base_name(
        owner_slug: str | None,
        title_hint: str | None,
        fallback_name: str | None,
        field_hint: str | None,
    ) -> str:
        for candidate in (owner_slug, title_hint, fallback_name):
            if candidate:
                slug = slugify(candidate)
                if slug:
                    return slug
        raise NamingResolutionError(
            "Cannot name upload for field %r: no owner slug, title or fallback name"
            % (field_hint or "unknown")
        )

    @staticmethod
    def _extension(
        kind: MediaKind, original_name: str | None, content_type: str | None = None
    ) -> str:
        if kind is MediaKind.IMAGE:
            if is_vector_image(content_type, original_name):
                return VECTOR_IMAGE_EXTENSION
            return NORMALIZED_IMAGE_EXTENSION
        suffix = PurePosixPath(original_name or "").suffix.lower()
        if re.fullmatch(r"\.[a-z0-9]{1,8}", suffix):
            return suffix
        if kind is MediaKind.VIDEO:
            return DEFAULT_VIDEO_EXTENSION
        return DEFAULT_EXTENSION
