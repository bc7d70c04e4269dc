from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _load_repo_env() -> None:
    """Load the nearest .env starting from this file upward."""
    current = Path(__file__).resolve()
    for candidate in [current.parent, *current.parents]:
        env_file = candidate / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            return


_load_repo_env()


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or value == "":
        raise ValueError(f"Environment variable {name} is required")
    return value


@dataclass(frozen=True)
class TranscodeConfig:
    database_url: str
    redis_host: str
    redis_port: int
    redis_db: int
    queue_name: str
    relay_backend: str
    storage_backend: str
    storage_local_root: str
    storage_public_base_url: str
    storage_endpoint_url: str | None
    storage_region: str
    storage_bucket: str | None
    storage_access_key: str | None
    storage_secret_key: str | None
    quality: str
    transcode_mode: str
    min_transcode_mb: int
    ffmpeg_binary: str
    ffprobe_binary: str
    threads: int
    job_timeout_seconds: int


def load_config() -> TranscodeConfig:
    transcode_mode = os.getenv("TRANSCODE_MODE", "auto").strip().lower()
    if transcode_mode not in {"auto", "off"}:
        raise ValueError("Environment variable TRANSCODE_MODE must be 'auto' or 'off'")
    return TranscodeConfig(
        database_url=_require_env("TRANSCODE_DATABASE_URL"),
        redis_host=os.getenv("REDIS_HOST", "localhost"),
        redis_port=int(os.getenv("REDIS_PORT", "6379")),
        redis_db=int(os.getenv("REDIS_DB", "0")),
        queue_name=os.getenv("TRANSCODE_QUEUE_NAME", "media"),
        relay_backend=os.getenv("TRANSCODE_RELAY_BACKEND", "redis"),
        storage_backend=os.getenv("TRANSCODE_STORAGE_BACKEND", "local"),
        storage_local_root=os.getenv("TRANSCODE_STORAGE_ROOT", "storage"),
        storage_public_base_url=os.getenv("TRANSCODE_PUBLIC_BASE_URL", "/media"),
        storage_endpoint_url=os.getenv("TRANSCODE_STORAGE_ENDPOINT_URL") or None,
        storage_region=os.getenv("TRANSCODE_STORAGE_REGION", "us-east-1"),
        storage_bucket=os.getenv("TRANSCODE_STORAGE_BUCKET") or None,
        storage_access_key=os.getenv("TRANSCODE_STORAGE_ACCESS_KEY") or None,
        storage_secret_key=os.getenv("TRANSCODE_STORAGE_SECRET_KEY") or None,
        quality=os.getenv("TRANSCODE_QUALITY", "medium"),
        transcode_mode=transcode_mode,
        min_transcode_mb=int(os.getenv("TRANSCODE_MIN_SIZE_MB", "150")),
        ffmpeg_binary=os.getenv("TRANSCODE_FFMPEG_BINARY", "ffmpeg"),
        ffprobe_binary=os.getenv("TRANSCODE_FFPROBE_BINARY", "ffprobe"),
        threads=int(os.getenv("TRANSCODE_THREADS", "0")),
        job_timeout_seconds=int(os.getenv("TRANSCODE_JOB_TIMEOUT_SECONDS", "3600")),
    )
