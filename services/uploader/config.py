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


def _env_number(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number") from exc


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


MAX_CHUNK_MB = 10
MIN_CHUNK_MB = 1


@dataclass(frozen=True)
class UploaderConfig:
    api_base_url: str
    chunk_mb: int = MAX_CHUNK_MB
    min_chunk_mb: int = MIN_CHUNK_MB
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    resume_max_age_hours: float = 6.0
    stall_timeout_minutes: float = 15.0
    stall_check_seconds: float = 30.0
    lease_ttl_seconds: int = 300
    state_dir: str = ".upload-state"
    request_timeout_seconds: float = 120.0
    success_dismiss_seconds: float = 1.5
    progress_wait_seconds: float = 25.0

    @property
    def chunk_bytes(self) -> int:
        return self.chunk_mb * 1024 * 1024

    @property
    def min_chunk_bytes(self) -> int:
        return self.min_chunk_mb * 1024 * 1024


def load_config() -> UploaderConfig:
    chunk_mb = _clamp(int(_env_number("UPLOADER_CHUNK_MB", MAX_CHUNK_MB)), MIN_CHUNK_MB, MAX_CHUNK_MB)
    min_chunk_mb = _clamp(int(_env_number("UPLOADER_MIN_CHUNK_MB", MIN_CHUNK_MB)), MIN_CHUNK_MB, chunk_mb)
    return UploaderConfig(
        api_base_url=_require_env("UPLOADER_API_BASE_URL"),
        chunk_mb=chunk_mb,
        min_chunk_mb=min_chunk_mb,
        max_attempts=max(1, int(_env_number("UPLOADER_MAX_ATTEMPTS", 3))),
        backoff_seconds=_env_number("UPLOADER_BACKOFF_SECONDS", 1.0),
        resume_max_age_hours=_env_number("UPLOADER_RESUME_MAX_AGE_HOURS", 6.0),
        stall_timeout_minutes=_env_number("UPLOADER_STALL_TIMEOUT_MINUTES", 15.0),
        stall_check_seconds=_env_number("UPLOADER_STALL_CHECK_SECONDS", 30.0),
        lease_ttl_seconds=int(_env_number("UPLOADER_LEASE_TTL_SECONDS", 300)),
        state_dir=os.getenv("UPLOADER_STATE_DIR", ".upload-state"),
        request_timeout_seconds=_env_number("UPLOADER_REQUEST_TIMEOUT_SECONDS", 120.0),
        success_dismiss_seconds=_env_number("UPLOADER_SUCCESS_DISMISS_SECONDS", 1.5),
        progress_wait_seconds=_env_number("UPLOADER_PROGRESS_WAIT_SECONDS", 25.0),
    )
