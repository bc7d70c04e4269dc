from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from redis import Redis

from media_pipeline.catalog.assets import SqlAlchemyAssetRepository
from media_pipeline.catalog.db import create_session_factory
from media_pipeline.jobs import ProcessingJob
from media_pipeline.media.classifier import MB
from media_pipeline.progress.redis_relay import RedisProgressRelay
from media_pipeline.progress.relay import InMemoryProgressRelay
from media_pipeline.storage import create_storage

from .application.use_cases import ProcessMediaUseCase
from .config import TranscodeConfig, load_config
from .infrastructure.ffmpeg import (
    FFmpegFrameExtractor,
    FFmpegPreviewGenerator,
    FFmpegTranscoder,
    FFprobe,
)
from .infrastructure.queue import create_worker as build_worker

logger = logging.getLogger(__name__)

_CONFIG: TranscodeConfig | None = None
_USE_CASE: ProcessMediaUseCase | None = None


def get_config() -> TranscodeConfig:
    global _CONFIG
    if _CONFIG is None:
        _CONFIG = load_config()
    return _CONFIG


def _build_relay(cfg: TranscodeConfig):
    if cfg.relay_backend == "memory":
        return InMemoryProgressRelay()
    return RedisProgressRelay(
        Redis(host=cfg.redis_host, port=cfg.redis_port, db=cfg.redis_db)
    )


def get_use_case() -> ProcessMediaUseCase:
    global _USE_CASE
    if _USE_CASE is None:
        cfg = get_config()
        storage = create_storage(
            backend=cfg.storage_backend,
            local_root=cfg.storage_local_root,
            public_base_url=cfg.storage_public_base_url,
            s3_endpoint_url=cfg.storage_endpoint_url,
            s3_region=cfg.storage_region,
            s3_bucket=cfg.storage_bucket,
            s3_access_key=cfg.storage_access_key,
            s3_secret_key=cfg.storage_secret_key,
        )
        probe = FFprobe(cfg.ffprobe_binary)
        _USE_CASE = ProcessMediaUseCase(
            storage=storage,
            transcoder=FFmpegTranscoder(
                ffmpeg_binary=cfg.ffmpeg_binary, probe=probe, threads=cfg.threads
            ),
            frame_extractor=FFmpegFrameExtractor(ffmpeg_binary=cfg.ffmpeg_binary),
            previews=FFmpegPreviewGenerator(ffmpeg_binary=cfg.ffmpeg_binary, probe=probe),
            assets=SqlAlchemyAssetRepository(create_session_factory(cfg.database_url)),
            relay=_build_relay(cfg),
            min_transcode_bytes=cfg.min_transcode_mb * MB,
            transcode_mode=cfg.transcode_mode,
        )
    return _USE_CASE


def process_media(payload: Mapping[str, Any]) -> dict[str, object]:
    """RQ entry point. Failures bubble so the job is marked failed."""
    job = ProcessingJob.from_payload(payload)
    logger.info("Processing %s for client %s", job.input_path, job.client_id)
    asset = get_use_case().execute(job)
    logger.info("Completed %s", asset.path)
    return asset.to_item()


def run_worker(queue_name: Optional[str] = None):
    cfg = get_config()
    worker = build_worker(cfg, queue_name=queue_name)
    logger.info("Starting worker for queue: %s", queue_name or cfg.queue_name)
    worker.work()
