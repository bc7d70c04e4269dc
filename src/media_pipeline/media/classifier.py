"""Map declared content types and file names to semantic media kinds."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Mapping

MB = 1024 * 1024
GB = 1024 * MB


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    OTHER = "other"


class UnsupportedType(ValueError):
    """Raised when a file cannot be mapped to a concrete media kind."""


class SizeLimitExceeded(ValueError):
    """Raised when a file is at or above the ceiling for its kind."""

    def __init__(self, kind: MediaKind, size: int, ceiling: int) -> None:
        super().__init__(
            f"{kind.value} of {size} bytes exceeds the {ceiling} byte limit"
        )
        self.kind = kind
        self.size = size
        self.ceiling = ceiling


MIME_TYPES: dict[str, MediaKind] = {
    "image/jpeg": MediaKind.IMAGE,
    "image/png": MediaKind.IMAGE,
    "image/webp": MediaKind.IMAGE,
    "image/gif": MediaKind.IMAGE,
    "image/svg+xml": MediaKind.IMAGE,
    "image/bmp": MediaKind.IMAGE,
    "video/mp4": MediaKind.VIDEO,
    "video/webm": MediaKind.VIDEO,
    "video/quicktime": MediaKind.VIDEO,
    "video/x-msvideo": MediaKind.VIDEO,
    "video/x-matroska": MediaKind.VIDEO,
    "audio/mpeg": MediaKind.AUDIO,
    "audio/mp4": MediaKind.AUDIO,
    "audio/ogg": MediaKind.AUDIO,
    "audio/wav": MediaKind.AUDIO,
    "audio/webm": MediaKind.AUDIO,
    "application/pdf": MediaKind.DOCUMENT,
    "application/msword": MediaKind.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": MediaKind.DOCUMENT,
    "application/vnd.ms-excel": MediaKind.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": MediaKind.DOCUMENT,
    "application/vnd.ms-powerpoint": MediaKind.DOCUMENT,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": MediaKind.DOCUMENT,
    "text/plain": MediaKind.DOCUMENT,
    "application/zip": MediaKind.DOCUMENT,
    "application/x-rar-compressed": MediaKind.DOCUMENT,
}

# Major types that are unambiguous even when the subtype is not listed above.
MAJOR_TYPES: dict[str, MediaKind] = {
    "image": MediaKind.IMAGE,
    "video": MediaKind.VIDEO,
    "audio": MediaKind.AUDIO,
}

EXTENSIONS: dict[str, MediaKind] = {
    ".jpg": MediaKind.IMAGE,
    ".jpeg": MediaKind.IMAGE,
    ".png": MediaKind.IMAGE,
    ".gif": MediaKind.IMAGE,
    ".webp": MediaKind.IMAGE,
    ".svg": MediaKind.IMAGE,
    ".bmp": MediaKind.IMAGE,
    ".mp4": MediaKind.VIDEO,
    ".m4v": MediaKind.VIDEO,
    ".webm": MediaKind.VIDEO,
    ".ogv": MediaKind.VIDEO,
    ".avi": MediaKind.VIDEO,
    ".mov": MediaKind.VIDEO,
    ".wmv": MediaKind.VIDEO,
    ".flv": MediaKind.VIDEO,
    ".mkv": MediaKind.VIDEO,
    ".mp3": MediaKind.AUDIO,
    ".m4a": MediaKind.AUDIO,
    ".ogg": MediaKind.AUDIO,
    ".wav": MediaKind.AUDIO,
    ".flac": MediaKind.AUDIO,
    ".pdf": MediaKind.DOCUMENT,
    ".doc": MediaKind.DOCUMENT,
    ".docx": MediaKind.DOCUMENT,
    ".xls": MediaKind.DOCUMENT,
    ".xlsx": MediaKind.DOCUMENT,
    ".ppt": MediaKind.DOCUMENT,
    ".pptx": MediaKind.DOCUMENT,
    ".txt": MediaKind.DOCUMENT,
    ".zip": MediaKind.DOCUMENT,
    ".rar": MediaKind.DOCUMENT,
}


# Stored as uploaded; raster re-encoding cannot read them.
VECTOR_IMAGE_TYPES = frozenset({"image/svg+xml"})
VECTOR_IMAGE_EXTENSIONS = frozenset({".svg"})


def _default_ceilings() -> dict[MediaKind, int]:
    return {
        MediaKind.IMAGE: 50 * MB,
        MediaKind.VIDEO: 8 * GB,
        MediaKind.AUDIO: 200 * MB,
        MediaKind.DOCUMENT: 50 * MB,
        MediaKind.OTHER: 50 * MB,
    }


@dataclass(frozen=True)
class SizePolicy:
    """Per-kind size ceilings. A ceiling is an exclusive upper bound."""

    ceilings: Mapping[MediaKind, int] = field(default_factory=_default_ceilings)

    @classmethod
    def from_megabytes(cls, **limits_mb: int) -> "SizePolicy":
        ceilings = _default_ceilings()
        for name, megabytes in limits_mb.items():
            ceilings[MediaKind(name)] = int(megabytes) * MB
        return cls(ceilings=ceilings)

    def ceiling(self, kind: MediaKind) -> int:
        return self.ceilings[kind]

    def check(self, kind: MediaKind, size: int) -> None:
        ceiling = self.ceiling(kind)
        if size >= ceiling:
            raise SizeLimitExceeded(kind, size, ceiling)


def _normalize_content_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_vector_image(content_type: str | None = None, file_name: str | None = None) -> bool:
    if _normalize_content_type(content_type) in VECTOR_IMAGE_TYPES:
        return True
    return bool(file_name) and PurePosixPath(file_name).suffix.lower() in VECTOR_IMAGE_EXTENSIONS


def classify(
    content_type: str | None = None,
    file_name: str | None = None,
    *,
    require_concrete: bool = False,
) -> MediaKind:
    mime = _normalize_content_type(content_type)
    kind = MIME_TYPES.get(mime)
    if kind is None and "/" in mime:
        kind = MAJOR_TYPES.get(mime.split("/", 1)[0])
    if kind is None and file_name:
        kind = EXTENSIONS.get(PurePosixPath(file_name).suffix.lower())
    kind = kind or MediaKind.OTHER

    if require_concrete and kind is MediaKind.OTHER:
        raise UnsupportedType(
            f"Unsupported file type: {mime or 'unknown'} ({file_name or 'unnamed'})"
        )
    return kind


class MediaClassifier:
    def __init__(self, policy: SizePolicy | None = None) -> None:
        self._policy = policy or SizePolicy()

    @property
    def policy(self) -> SizePolicy:
        return self._policy

    def classify(
        self,
        content_type: str | None = None,
        file_name: str | None = None,
        *,
        require_concrete: bool = False,
    ) -> MediaKind:
        return classify(content_type, file_name, require_concrete=require_concrete)

    def admit(
        self,
        *,
        content_type: str | None,
        file_name: str | None,
        size: int,
        require_concrete: bool = True,
    ) -> MediaKind:
        """Classify a file and enforce the size policy for its kind."""
        kind = self.classify(content_type, file_name, require_concrete=require_concrete)
        self._policy.check(kind, size)
        return kind
