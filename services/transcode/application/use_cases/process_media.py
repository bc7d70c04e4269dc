from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from tempfile import TemporaryDirectory

from media_pipeline.capabilities import Capability
from media_pipeline.catalog.assets import StoredAsset, delete_asset_files
from media_pipeline.jobs import ProcessingJob
from media_pipeline.media.classifier import MB, MediaKind
from media_pipeline.progress.events import Stage
from media_pipeline.progress.relay import ProgressEmitter, ProgressRelay
from media_pipeline.storage import Storage

from services.transcode.application.interfaces import (
    FrameExtractor,
    PreviewGenerator,
    Transcoder,
)
from services.transcode.domain.job import (
    JobStage,
    JobState,
    PipelineStageFailure,
    TranscodeFailed,
)
from services.transcode.domain.quality import quality_profile

logger = logging.getLogger(__name__)

DEFAULT_MIN_TRANSCODE_BYTES = 150 * MB
THUMBNAIL_SIZE = (640, 360)
TRANSCODED_EXTENSION = ".mp4"


class ProcessMediaUseCase:
    """Compress, derive previews and publish one uploaded video.

    Stage changes and percentages are reported through the relay under the
    job's client id. Transcoder crashes and assembly failures are fatal and
    re-raised after an error event; asset generation failures only lose the
    thumbnail or previews.
    """

    def __init__(
        self,
        *,
        storage: Storage,
        transcoder: Transcoder,
        frame_extractor: FrameExtractor,
        previews: PreviewGenerator,
        assets,
        relay: ProgressRelay,
        min_transcode_bytes: int = DEFAULT_MIN_TRANSCODE_BYTES,
        transcode_mode: str = "auto",
    ) -> None:
        self._storage = storage
        self._transcoder = transcoder
        self._frame_extractor = frame_extractor
        self._previews = previews
        self._assets = assets
        self._relay = relay
        self._min_transcode_bytes = min_transcode_bytes
        self._transcode_mode = transcode_mode

    def execute(self, job: ProcessingJob) -> StoredAsset:
        emitter = ProgressEmitter(self._relay, job.client_id)
        state = JobState(job.job_id)
        try:
            with TemporaryDirectory() as tmpdir:
                workdir = Path(tmpdir)
                source = workdir / f"input{PurePosixPath(job.input_path).suffix}"
                self._storage.download(job.input_path, source.as_posix())

                self._enter(state, emitter, JobStage.COMPRESSING)
                video, transcoded = self._compress(job, source, workdir, state, emitter)

                self._enter(state, emitter, JobStage.GENERATING_ASSETS)
                thumbnail = self._extract_thumbnail(job, video, workdir)
                previews = self._generate_previews(job, video, workdir)

                self._enter(state, emitter, JobStage.ASSEMBLING)
                asset = self._assemble(job, video, transcoded, thumbnail, previews)

            state.advance(JobStage.DONE)
            emitter.done()
            logger.info("Processed job %s into %s", job.job_id, asset.path)
            return asset
        except Exception as exc:
            if not state.terminal:
                state.fail()
            logger.error(
                "Processing job %s failed during %s: %s", job.job_id, state.stage.value, exc
            )
            emitter.error(str(exc) or "Processing failed")
            raise

    @staticmethod
    def _enter(state: JobState, emitter: ProgressEmitter, stage: JobStage) -> None:
        state.advance(stage)
        emitter.stage(Stage(stage.value))

    def _transcode_capability(self, job: ProcessingJob) -> Capability:
        if self._transcode_mode == "off":
            return Capability.UNAVAILABLE
        if job.size < self._min_transcode_bytes:
            return Capability.UNAVAILABLE
        return self._transcoder.capability()

    def _compress(
        self,
        job: ProcessingJob,
        source: Path,
        workdir: Path,
        state: JobState,
        emitter: ProgressEmitter,
    ) -> tuple[Path, bool]:
        capability = self._transcode_capability(job)
        if not capability.usable:
            logger.info("Skipping transcode for job %s (%s bytes)", job.job_id, job.size)
            self._report(state, emitter, 100)
            return source, False

        def on_progress(percent: float) -> None:
            self._report(state, emitter, int(percent))

        destination = workdir / f"output{TRANSCODED_EXTENSION}"
        exit_code = self._transcoder.transcode(
            source,
            destination,
            quality_profile(job.quality),
            on_progress if capability is Capability.AVAILABLE else None,
        )
        if exit_code != 0:
            raise TranscodeFailed(
                f"Transcoder exited with status {exit_code} for {job.original_name}"
            )
        if capability is Capability.DEGRADED:
            logger.warning("Transcoded job %s without progress reporting", job.job_id)
        self._report(state, emitter, 100)
        return destination, True

    @staticmethod
    def _report(state: JobState, emitter: ProgressEmitter, percent: int) -> None:
        if state.record_progress(percent):
            emitter.progress(state.percent)

    def _extract_thumbnail(
        self, job: ProcessingJob, video: Path, workdir: Path
    ) -> Path | None:
        thumbnail = workdir / "thumbnail.jpg"
        try:
            exit_code = self._frame_extractor.extract_frame(video, thumbnail, THUMBNAIL_SIZE)
            if exit_code != 0 or not thumbnail.exists():
                raise PipelineStageFailure(f"frame extractor exited with {exit_code}")
        except (PipelineStageFailure, OSError) as exc:
            logger.warning("No thumbnail for job %s: %s", job.job_id, exc)
            return None
        return thumbnail

    def _generate_previews(
        self, job: ProcessingJob, video: Path, workdir: Path
    ) -> tuple[Path, Path] | None:
        sprite = workdir / "sprite.jpg"
        vtt = workdir / "preview.vtt"
        try:
            created = self._previews.generate(
                video, sprite, vtt, self._storage.public_url(job.sprite_path)
            )
        except (PipelineStageFailure, OSError) as exc:
            logger.warning("No scrubber previews for job %s: %s", job.job_id, exc)
            return None
        return (sprite, vtt) if created else None

    def _assemble(
        self,
        job: ProcessingJob,
        video: Path,
        transcoded: bool,
        thumbnail: Path | None,
        previews: tuple[Path, Path] | None,
    ) -> StoredAsset:
        placement = job.placement
        file_name = placement.file_name
        if transcoded:
            file_name = PurePosixPath(file_name).with_suffix(TRANSCODED_EXTENSION).name
        output_path = f"{placement.folder_path}/{file_name}"
        self._storage.upload(video.as_posix(), output_path)

        thumbnail_path = None
        if thumbnail is not None:
            thumbnail_path = job.thumbnail_path
            self._storage.upload(thumbnail.as_posix(), thumbnail_path)

        sprite_path = vtt_path = None
        if previews is not None:
            sprite_path, vtt_path = job.sprite_path, job.preview_vtt_path
            self._storage.upload(previews[0].as_posix(), sprite_path)
            self._storage.upload(previews[1].as_posix(), vtt_path)

        url = self._storage.public_url
        asset = StoredAsset(
            resource=job.resource,
            owner_entity_id=job.owner_entity_id,
            field_name=job.field_name,
            kind=MediaKind.VIDEO.value,
            path=output_path,
            url=url(output_path),
            content_type="video/mp4" if transcoded else job.content_type,
            size=video.stat().st_size,
            original_name=job.original_name,
            thumbnail_path=thumbnail_path,
            thumbnail_url=url(thumbnail_path) if thumbnail_path else None,
            preview_sprite_path=sprite_path,
            preview_sprite_url=url(sprite_path) if sprite_path else None,
            preview_vtt_path=vtt_path,
            preview_vtt_url=url(vtt_path) if vtt_path else None,
        )
        previous = self._assets.attach(asset)
        delete_asset_files(self._storage, previous, keep=asset)
        self._storage.delete(job.input_path)
        return asset
