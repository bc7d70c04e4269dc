from __future__ import annotations

import logging
import math
import shutil
import subprocess
import tempfile
from pathlib import Path

from media_pipeline.capabilities import Capability

from services.transcode.application.interfaces import ProgressCallback
from services.transcode.domain.job import PipelineStageFailure
from services.transcode.domain.quality import QualityProfile

LOGGER = logging.getLogger(__name__)

FASTSTART_EXTENSIONS = {".mp4", ".m4v", ".mov"}

PREVIEW_INTERVAL_SECONDS = 5
PREVIEW_TILE_WIDTH = 120
PREVIEW_TILE_HEIGHT = 68
PREVIEW_COLUMNS = 5
PREVIEW_MIN_DURATION_SECONDS = 10


def _timemark_seconds(value: str) -> float | None:
    """Parse an ffmpeg ``HH:MM:SS.micro`` timemark."""
    try:
        hours, minutes, seconds = value.strip().split(":")
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    except ValueError:
        return None


def _vtt_timestamp(seconds: float) -> str:
    millis = int(round(seconds * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


class FFprobe:
    def __init__(self, binary: str = "ffprobe") -> None:
        self._binary = binary

    @property
    def available(self) -> bool:
        return shutil.which(self._binary) is not None

    def duration(self, source: Path) -> float | None:
        cmd = [
            self._binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            source.as_posix(),
        ]
        result = subprocess.run(cmd, capture_output=True)
        if result.returncode != 0:
            LOGGER.warning(
                "ffprobe failed for %s: %s",
                source.name,
                result.stderr.decode("utf-8", errors="ignore").strip(),
            )
            return None
        try:
            return float(result.stdout.decode("utf-8", errors="ignore").strip())
        except ValueError:
            return None


class FFmpegTranscoder:
    """H.264/AAC transcoder. Granular progress needs ffprobe for the duration."""

    def __init__(
        self,
        *,
        ffmpeg_binary: str = "ffmpeg",
        probe: FFprobe | None = None,
        threads: int = 0,
        log_level: str = "error",
    ) -> None:
        self._binary = ffmpeg_binary
        self._probe = probe or FFprobe()
        self._threads = threads
        self._log_level = log_level

    def capability(self) -> Capability:
        if shutil.which(self._binary) is None:
            return Capability.UNAVAILABLE
        if not self._probe.available:
            return Capability.DEGRADED
        return Capability.AVAILABLE

    def build_command(
        self, source: Path, destination: Path, profile: QualityProfile, *, with_progress: bool
    ) -> list[str]:
        scale = (
            f"scale='min({profile.max_width},iw)':'min({profile.max_height},ih)'"
            ":force_original_aspect_ratio=decrease,"
            "scale=trunc(iw/2)*2:trunc(ih/2)*2"
        )
        cmd = [
            self._binary,
            "-y",
            "-hide_banner",
            "-loglevel",
            self._log_level,
            "-i",
            source.as_posix(),
            "-c:v",
            "libx264",
            "-preset",
            "veryfast",
            "-crf",
            str(profile.crf),
            "-maxrate",
            profile.video_bitrate,
            "-bufsize",
            profile.video_bitrate,
            "-vf",
            scale,
            "-c:a",
            "aac",
            "-b:a",
            profile.audio_bitrate,
            "-threads",
            str(self._threads),
        ]
        if destination.suffix.lower() in FASTSTART_EXTENSIONS:
            cmd.extend(["-movflags", "+faststart"])
        if with_progress:
            cmd.extend(["-progress", "pipe:1", "-nostats"])
        cmd.append(destination.as_posix())
        return cmd

    def transcode(
        self,
        source: Path,
        destination: Path,
        profile: QualityProfile,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        destination.parent.mkdir(parents=True, exist_ok=True)
        duration = self._probe.duration(source) if on_progress is not None else None
        if not duration:
            cmd = self.build_command(source, destination, profile, with_progress=False)
            result = subprocess.run(cmd, capture_output=True)
            if result.returncode != 0:
                LOGGER.error(
                    "ffmpeg transcode failed for %s: %s",
                    source.name,
                    result.stderr.decode("utf-8", errors="ignore").strip() or "unknown error",
                )
            return result.returncode

        cmd = self.build_command(source, destination, profile, with_progress=True)
        with tempfile.TemporaryFile() as stderr:
            process = subprocess.Popen(
                cmd, stdout=subprocess.PIPE, stderr=stderr, text=True
            )
            for line in process.stdout:
                key, _, value = line.partition("=")
                if key != "out_time":
                    continue
                elapsed = _timemark_seconds(value)
                if elapsed is not None and elapsed >= 0:
                    on_progress(min(99.0, elapsed / duration * 100))
            exit_code = process.wait()
            if exit_code != 0:
                stderr.seek(0)
                LOGGER.error(
                    "ffmpeg transcode failed for %s: %s",
                    source.name,
                    stderr.read().decode("utf-8", errors="ignore").strip() or "unknown error",
                )
        return exit_code


class FFmpegFrameExtractor:
    def __init__(self, *, ffmpeg_binary: str = "ffmpeg", offset_seconds: float = 1.0) -> None:
        self._binary = ffmpeg_binary
        self._offset = offset_seconds

    def extract_frame(self, source: Path, destination: Path, size: tuple[int, int]) -> int:
        width, height = size
        cmd = [
            self._binary,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-ss",
            str(self._offset),
            "-i",
            source.as_posix(),
            "-frames:v",
            "1",
            "-vf",
            f"scale={width}:{height}:force_original_aspect_ratio=decrease",
            destination.as_posix(),
        ]
        result = subprocess.run(cmd, capture_output=True)
        return result.returncode


class FFmpegPreviewGenerator:
    """Sprite sheet of evenly spaced frames plus a WebVTT index into it."""

    def __init__(
        self,
        *,
        ffmpeg_binary: str = "ffmpeg",
        probe: FFprobe | None = None,
        interval_seconds: int = PREVIEW_INTERVAL_SECONDS,
        tile_size: tuple[int, int] = (PREVIEW_TILE_WIDTH, PREVIEW_TILE_HEIGHT),
        columns: int = PREVIEW_COLUMNS,
        min_duration_seconds: int = PREVIEW_MIN_DURATION_SECONDS,
    ) -> None:
        self._binary = ffmpeg_binary
        self._probe = probe or FFprobe()
        self._interval = interval_seconds
        self._tile_width, self._tile_height = tile_size
        self._columns = columns
        self._min_duration = min_duration_seconds

    def generate(self, source: Path, sprite: Path, vtt: Path, sprite_url: str) -> bool:
        if not self._probe.available:
            raise PipelineStageFailure("ffprobe is not available")
        duration = self._probe.duration(source)
        if duration is None:
            raise PipelineStageFailure(f"Could not read the duration of {source.name}")
        if duration < self._min_duration:
            return False

        frames = max(1, math.ceil(duration / self._interval))
        rows = math.ceil(frames / self._columns)
        cmd = [
            self._binary,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            source.as_posix(),
            "-vf",
            (
                f"fps=1/{self._interval},"
                f"scale={self._tile_width}:{self._tile_height},"
                f"tile={self._columns}x{rows}"
            ),
            "-frames:v",
            "1",
            sprite.as_posix(),
        ]
        result = subprocess.run(cmd, capture_output=True)
        if result.returncode != 0:
            raise PipelineStageFailure(
                f"ffmpeg sprite generation failed for {source.name}: "
                f"{result.stderr.decode('utf-8', errors='ignore').strip() or 'unknown error'}"
            )
        vtt.write_text(self.build_vtt(duration, frames, sprite_url), encoding="utf-8")
        return True

    def build_vtt(self, duration: float, frames: int, sprite_url: str) -> str:
        lines = ["WEBVTT", ""]
        for index in range(frames):
            start = index * self._interval
            end = min(duration, start + self._interval)
            x = (index % self._columns) * self._tile_width
            y = (index // self._columns) * self._tile_height
            lines.append(f"{_vtt_timestamp(start)} --> {_vtt_timestamp(end)}")
            lines.append(
                f"{sprite_url}#xywh={x},{y},{self._tile_width},{self._tile_height}"
            )
            lines.append("")
        return "\n".join(lines)
