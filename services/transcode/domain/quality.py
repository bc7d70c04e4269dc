from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class QualityProfile:
    name: str
    max_width: int
    max_height: int
    video_bitrate: str
    audio_bitrate: str
    crf: int


QUALITY_PROFILES: dict[str, QualityProfile] = {
    "high": QualityProfile("high", 1920, 1080, "2M", "128k", 18),
    "medium": QualityProfile("medium", 1280, 720, "1M", "96k", 23),
    "low": QualityProfile("low", 854, 480, "500k", "64k", 28),
}


def quality_profile(name: str | None) -> QualityProfile:
    try:
        return QUALITY_PROFILES[(name or "medium").lower()]
    except KeyError as exc:
        raise ValueError(f"Unknown quality level: {name}") from exc
