from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from media_pipeline.media.naming import DEFAULT_RESOURCE_FOLDERS


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


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_mapping(raw: str | None) -> dict[str, str]:
    """Parse ``product=products,lesson=lessons`` into a dict."""
    mapping: dict[str, str] = {}
    for pair in (raw or "").split(","):
        if not pair.strip():
            continue
        key, sep, value = pair.partition("=")
        if not sep or not key.strip() or not value.strip():
            raise ValueError(f"Invalid mapping entry: {pair!r}")
        mapping[key.strip()] = value.strip()
    return mapping


@dataclass(frozen=True)
class IntakeConfig:
    database_url: str
    storage_backend: str = "local"
    storage_local_root: str = "storage"
    storage_public_base_url: str = "/media"
    storage_endpoint_url: str | None = None
    storage_region: str = "us-east-1"
    storage_bucket: str | None = None
    storage_access_key: str | None = None
    storage_secret_key: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    relay_backend: str = "redis"
    lease_backend: str = "redis"
    queue_name: str = "media"
    job_timeout_seconds: int = 3600
    lease_ttl_seconds: int = 300
    instance_id: str | None = None
    quality: str = "medium"
    accept_unknown_types: bool = True
    size_limits_mb: dict[str, int] = field(default_factory=dict)
    resource_folders: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_RESOURCE_FOLDERS)
    )
    per_entity_resources: frozenset[str] = frozenset({"lesson"})
    stale_upload_max_age_hours: int = 24
    cleanup_interval_seconds: int = 3600


def load_config() -> IntakeConfig:
    size_limits = {
        kind: _env_int(f"INTAKE_MAX_{kind.upper()}_MB", 0)
        for kind in ("image", "video", "audio", "document", "other")
    }
    resource_folders = dict(DEFAULT_RESOURCE_FOLDERS)
    resource_folders.update(_parse_mapping(os.getenv("INTAKE_RESOURCE_FOLDERS")))
    per_entity = os.getenv("INTAKE_PER_ENTITY_RESOURCES", "lesson")
    return IntakeConfig(
        database_url=_require_env("INTAKE_DATABASE_URL"),
        storage_backend=os.getenv("INTAKE_STORAGE_BACKEND", "local"),
        storage_local_root=os.getenv("INTAKE_STORAGE_ROOT", "storage"),
        storage_public_base_url=os.getenv("INTAKE_PUBLIC_BASE_URL", "/media"),
        storage_endpoint_url=os.getenv("INTAKE_STORAGE_ENDPOINT_URL") or None,
        storage_region=os.getenv("INTAKE_STORAGE_REGION", "us-east-1"),
        storage_bucket=os.getenv("INTAKE_STORAGE_BUCKET") or None,
        storage_access_key=os.getenv("INTAKE_STORAGE_ACCESS_KEY") or None,
        storage_secret_key=os.getenv("INTAKE_STORAGE_SECRET_KEY") or None,
        redis_host=os.getenv("REDIS_HOST", "localhost"),
        redis_port=_env_int("REDIS_PORT", 6379),
        redis_db=_env_int("REDIS_DB", 0),
        relay_backend=os.getenv("INTAKE_RELAY_BACKEND", "redis"),
        lease_backend=os.getenv("INTAKE_LEASE_BACKEND", "redis"),
        queue_name=os.getenv("INTAKE_QUEUE_NAME", "media"),
        job_timeout_seconds=_env_int("INTAKE_JOB_TIMEOUT_SECONDS", 3600),
        lease_ttl_seconds=_env_int("INTAKE_LEASE_TTL_SECONDS", 300),
        instance_id=os.getenv("INTAKE_INSTANCE_ID") or None,
        quality=os.getenv("INTAKE_VIDEO_QUALITY", "medium"),
        accept_unknown_types=_env_bool("INTAKE_ACCEPT_UNKNOWN_TYPES", True),
        size_limits_mb={kind: mb for kind, mb in size_limits.items() if mb > 0},
        resource_folders=resource_folders,
        per_entity_resources=frozenset(
            item.strip() for item in per_entity.split(",") if item.strip()
        ),
        stale_upload_max_age_hours=_env_int("INTAKE_STALE_UPLOAD_MAX_AGE_HOURS", 24),
        cleanup_interval_seconds=_env_int("INTAKE_CLEANUP_INTERVAL_SECONDS", 3600),
    )
