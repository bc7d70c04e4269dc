from __future__ import annotations

import io
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from media_pipeline.media.classifier import UnsupportedType

MAX_WIDTH = 1200
THUMBNAIL_WIDTH = 320
WEBP_QUALITY = 80


class PillowImageEncoder:
    """Re-encodes images to WebP, capped in width, plus a small thumbnail."""

    def __init__(
        self,
        *,
        max_width: int = MAX_WIDTH,
        thumbnail_width: int = THUMBNAIL_WIDTH,
        quality: int = WEBP_QUALITY,
    ) -> None:
        self._max_width = max_width
        self._thumbnail_width = thumbnail_width
        self._quality = quality

    def encode(self, source: Path) -> tuple[bytes, bytes]:
        try:
            with Image.open(source) as opened:
                image = ImageOps.exif_transpose(opened)
                image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise UnsupportedType(f"Cannot decode image {source.name}: {exc}") from exc

        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
        return (
            self._to_webp(_fit_width(image, self._max_width)),
            self._to_webp(_fit_width(image, self._thumbnail_width)),
        )

    def _to_webp(self, image: Image.Image) -> bytes:
        buffer = io.BytesIO()
        image.save(buffer, format="WEBP", quality=self._quality)
        return buffer.getvalue()


def _fit_width(image: Image.Image, width: int) -> Image.Image:
    if image.width <= width:
        return image
    height = max(1, round(image.height * width / image.width))
    return image.resize((width, height), Image.LANCZOS)
