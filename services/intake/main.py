from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis import Redis
from starlette.concurrency import run_in_threadpool

from media_pipeline.catalog.assets import SqlAlchemyAssetRepository
from media_pipeline.catalog.db import create_session_factory
from media_pipeline.catalog.metadata import SqlEntityMetadataStore
from media_pipeline.media.classifier import MediaClassifier, SizePolicy
from media_pipeline.media.naming import PlacementResolver
from media_pipeline.progress.async_relay import (
    AsyncProgressRelay,
    AsyncRedisProgressRelay,
    LocalAsyncRelay,
)
from media_pipeline.progress.relay import InMemoryProgressRelay
from media_pipeline.storage import create_storage

from services.intake.api.progress_routes import (
    ProgressConnectionManager,
    create_progress_router,
)
from services.intake.api.routes import create_router
from services.intake.application.place_asset import PlaceAssetUseCase
from services.intake.application.receive_chunk import ReceiveChunkUseCase
from services.intake.application.sweep_uploads import SweepStaleUploadsUseCase
from services.intake.config import IntakeConfig, load_config
from services.intake.infrastructure.dispatch import RqJobDispatcher, create_queue
from services.intake.infrastructure.ids import HexIdProvider
from services.intake.infrastructure.images import PillowImageEncoder
from services.intake.infrastructure.locks import InMemoryUploadLease, RedisUploadLease

logger = logging.getLogger(__name__)


def _build_relay(cfg: IntakeConfig) -> AsyncProgressRelay:
    if cfg.relay_backend == "memory":
        return LocalAsyncRelay(InMemoryProgressRelay())
    return AsyncRedisProgressRelay.connect(
        host=cfg.redis_host, port=cfg.redis_port, db=cfg.redis_db
    )


def _build_lease(cfg: IntakeConfig):
    if cfg.lease_backend == "memory":
        return InMemoryUploadLease()
    return RedisUploadLease(
        Redis(host=cfg.redis_host, port=cfg.redis_port, db=cfg.redis_db)
    )


async def _sweep_periodically(sweeper: SweepStaleUploadsUseCase, interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await run_in_threadpool(sweeper.execute)
        except Exception as e:
            logger.error(f"Stale upload sweep failed: {e}")


def build_app(config: IntakeConfig | None = None) -> FastAPI:
    cfg = config or load_config()

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
    orm_session_factory = create_session_factory(cfg.database_url)
    placer = PlaceAssetUseCase(
        storage=storage,
        assets=SqlAlchemyAssetRepository(session_factory=orm_session_factory),
        resolver=PlacementResolver(
            resource_folders=cfg.resource_folders,
            per_entity_video_resources=cfg.per_entity_resources,
        ),
        image_encoder=PillowImageEncoder(),
        metadata=SqlEntityMetadataStore(orm_session_factory),
    )
    queue = create_queue(
        host=cfg.redis_host,
        port=cfg.redis_port,
        db=cfg.redis_db,
        queue_name=cfg.queue_name,
    )
    receive_chunk_use_case = ReceiveChunkUseCase(
        storage=storage,
        classifier=MediaClassifier(SizePolicy.from_megabytes(**cfg.size_limits_mb)),
        placer=placer,
        dispatcher=RqJobDispatcher(queue, job_timeout=cfg.job_timeout_seconds),
        lease=_build_lease(cfg),
        ids=HexIdProvider(),
        instance_id=cfg.instance_id or HexIdProvider(prefix="intake", nbytes=6).generate(),
        lease_ttl_seconds=cfg.lease_ttl_seconds,
        quality=cfg.quality,
        accept_unknown_types=cfg.accept_unknown_types,
    )
    progress_relay = _build_relay(cfg)
    sweeper = SweepStaleUploadsUseCase(
        storage=storage, max_age_seconds=cfg.stale_upload_max_age_hours * 3600
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(
            _sweep_periodically(sweeper, cfg.cleanup_interval_seconds)
        )
        try:
            yield
        finally:
            task.cancel()
            await progress_relay.close()

    app = FastAPI(lifespan=lifespan)

    @app.get("/ping")
    async def ping():
        return {"message": "pong"}

    app.include_router(create_router(receive_chunk_use_case))
    app.include_router(
        create_progress_router(ProgressConnectionManager(progress_relay))
    )

    return app


def create_app() -> FastAPI:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return build_app()
