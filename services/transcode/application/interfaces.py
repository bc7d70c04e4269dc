from __future__ import annotations

from pathlib import Path
from typing import Callable, Protocol

from media_pipeline.capabilities import Capability

from services.transcode.domain.quality import QualityProfile

ProgressCallback = Callable[[float], None]


class Transcoder(Protocol):
    def capability(self) -> Capability: ...

    def transcode(
        self,
        source: Path,
        destination: Path,
        profile: QualityProfile,
        on_progress: ProgressCallback | None = None,
    ) -> int: ...


class FrameExtractor(Protocol):
    def extract_frame(self, source: Path, destination: Path, size: tuple[int, int]) -> int: ...


class PreviewGenerator(Protocol):
    def generate(self, source: Path, sprite: Path, vtt: Path, sprite_url: str) -> bool:
        """Write a sprite sheet and its WebVTT index; False when the video is too short."""
        ...
