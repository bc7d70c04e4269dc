from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import replace
from pathlib import Path, PurePosixPath
from tempfile import TemporaryDirectory
from typing import Callable

from media_pipeline.jobs import ProcessingJob
from media_pipeline.media.classifier import (
    MediaClassifier,
    MediaKind,
    SizeLimitExceeded,
    UnsupportedType,
)
from media_pipeline.storage import Storage

from services.intake.application.dto import ReceiveChunkCommand
from services.intake.application.interfaces import IdProvider, JobDispatcher, UploadLease
from services.intake.application.place_asset import PlaceAssetUseCase
from services.intake.domain.upload import AssemblyResult, UploadManifest, UploadTarget

logger = logging.getLogger(__name__)

CHUNK_ROOT = "tmp/chunks"
INCOMING_ROOT = "tmp/incoming"
MANIFEST_NAME = "manifest.json"
RESULT_NAME = "result.json"

_UPLOAD_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,128}")


class InvalidChunk(ValueError):
    """Raised for malformed chunk metadata."""


class IncompleteUpload(ValueError):
    def __init__(self, upload_id: str, missing: list[int]) -> None:
        super().__init__(
            f"Upload {upload_id} is missing chunks: {', '.join(map(str, missing))}"
        )
        self.upload_id = upload_id
        self.missing = missing


class UploadOwnershipError(RuntimeError):
    """Raised when another assembler instance holds the upload's chunk set."""


def chunk_folder(upload_id: str) -> str:
    return f"{CHUNK_ROOT}/{upload_id}"


def part_path(upload_id: str, index: int) -> str:
    return f"{chunk_folder(upload_id)}/{index:06d}.part"


class ReceiveChunkUseCase:
    """Collects chunks per upload id and assembles them on the final index.

    Replayed chunks are no-ops and a replayed request after completion returns
    the recorded result, so clients can retry any request safely.
    """

    def __init__(
        self,
        *,
        storage: Storage,
        classifier: MediaClassifier,
        placer: PlaceAssetUseCase,
        dispatcher: JobDispatcher,
        lease: UploadLease,
        ids: IdProvider,
        instance_id: str,
        lease_ttl_seconds: int = 300,
        quality: str = "medium",
        accept_unknown_types: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._classifier = classifier
        self._placer = placer
        self._dispatcher = dispatcher
        self._lease = lease
        self._ids = ids
        self._instance_id = instance_id
        self._lease_ttl = lease_ttl_seconds
        self._quality = quality
        self._accept_unknown_types = accept_unknown_types
        self._clock = clock
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def execute(self, command: ReceiveChunkCommand) -> AssemblyResult:
        upload_id, index, total = self._normalize(command)
        lease_key = f"upload-assembly:{upload_id}"
        if not self._lease.acquire(lease_key, self._instance_id, self._lease_ttl):
            raise UploadOwnershipError(
                f"Upload {upload_id} is being assembled by another instance"
            )

        with self._lock_for(upload_id):
            recorded = self._recorded_result(upload_id)
            if recorded is not None:
                logger.info("Replayed request for completed upload %s", upload_id)
                return recorded

            manifest = self._record_manifest(upload_id, total, command)
            path = part_path(upload_id, index)
            if self._storage.exists(path):
                logger.debug("Chunk %s of %s already stored", index, upload_id)
            else:
                self._storage.write(path, command.data)

            if index < total - 1:
                return AssemblyResult(
                    status="received",
                    upload_id=upload_id,
                    client_id=manifest.client_id,
                    chunk_index=index,
                    received_chunks=self._count_parts(upload_id),
                )

            try:
                result = self._assemble(manifest, command.target)
            except (UnsupportedType, SizeLimitExceeded):
                self._storage.delete(chunk_folder(upload_id))
                self._lease.release(lease_key, self._instance_id)
                raise

            self._storage.write(
                f"{chunk_folder(upload_id)}/{RESULT_NAME}",
                json.dumps(result.to_dict()).encode("utf-8"),
            )
            for i in range(total):
                self._storage.delete(part_path(upload_id, i))
            self._lease.release(lease_key, self._instance_id)

        with self._guard:
            self._locks.pop(upload_id, None)
        return result

    def _normalize(self, command: ReceiveChunkCommand) -> tuple[str, int, int]:
        if command.is_direct:
            return self._ids.generate(), 0, 1

        upload_id = command.upload_id or ""
        if not _UPLOAD_ID_PATTERN.fullmatch(upload_id):
            raise InvalidChunk(f"Invalid upload id: {upload_id!r}")
        if command.chunk_index is None or command.total_chunks is None:
            raise InvalidChunk("chunkIndex and totalChunks are required with uploadId")
        if command.total_chunks < 1:
            raise InvalidChunk(f"totalChunks must be positive, got {command.total_chunks}")
        if not 0 <= command.chunk_index < command.total_chunks:
            raise InvalidChunk(
                f"chunkIndex {command.chunk_index} outside 0..{command.total_chunks - 1}"
            )
        return upload_id, command.chunk_index, command.total_chunks

    def _lock_for(self, upload_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(upload_id, threading.Lock())

    def _recorded_result(self, upload_id: str) -> AssemblyResult | None:
        path = f"{chunk_folder(upload_id)}/{RESULT_NAME}"
        if not self._storage.exists(path):
            return None
        return AssemblyResult.from_dict(json.loads(self._storage.read(path)))

    def _record_manifest(
        self, upload_id: str, total: int, command: ReceiveChunkCommand
    ) -> UploadManifest:
        path = f"{chunk_folder(upload_id)}/{MANIFEST_NAME}"
        now = self._clock()
        if self._storage.exists(path):
            existing = UploadManifest.from_dict(json.loads(self._storage.read(path)))
            if existing.total_chunks != total:
                raise InvalidChunk(
                    f"Upload {upload_id} was started with {existing.total_chunks} "
                    f"chunks, got {total}"
                )
            manifest = replace(existing, updated_at=now)
        else:
            manifest = UploadManifest(
                upload_id=upload_id,
                total_chunks=total,
                original_name=command.original_name,
                content_type=command.content_type,
                client_id=command.client_id or self._ids.generate(),
                created_at=now,
                updated_at=now,
            )
            logger.info(
                "Started upload %s (%s chunks) for client %s",
                upload_id,
                total,
                manifest.client_id,
            )
        self._storage.write(path, json.dumps(manifest.to_dict()).encode("utf-8"))
        return manifest

    def _count_parts(self, upload_id: str) -> int:
        paths = self._storage.list(chunk_folder(upload_id))
        return sum(1 for path in paths if path.endswith(".part"))

    def _assemble(self, manifest: UploadManifest, target: UploadTarget) -> AssemblyResult:
        upload_id = manifest.upload_id
        parts = [part_path(upload_id, i) for i in range(manifest.total_chunks)]
        missing = [i for i, path in enumerate(parts) if not self._storage.exists(path)]
        if missing:
            raise IncompleteUpload(upload_id, missing)

        suffix = PurePosixPath(manifest.original_name).suffix.lower()
        with TemporaryDirectory() as tmpdir:
            assembled = Path(tmpdir) / f"assembled{suffix}"
            with assembled.open("wb") as handle:
                for path in parts:
                    handle.write(self._storage.read(path))
            size = assembled.stat().st_size

            kind = self._classifier.admit(
                content_type=manifest.content_type,
                file_name=manifest.original_name,
                size=size,
                require_concrete=not self._accept_unknown_types,
            )
            logger.info("Assembled upload %s: %s, %s bytes", upload_id, kind.value, size)

            if kind is MediaKind.VIDEO:
                return self._hand_off(manifest, target, assembled, size, suffix)

            asset = self._placer.execute(
                source=assembled,
                kind=kind,
                target=target,
                original_name=manifest.original_name,
                content_type=manifest.content_type,
                size=size,
            )
        return AssemblyResult(
            status="ok",
            upload_id=upload_id,
            client_id=manifest.client_id,
            item=asset.to_item(),
        )

    def _hand_off(
        self,
        manifest: UploadManifest,
        target: UploadTarget,
        assembled: Path,
        size: int,
        suffix: str,
    ) -> AssemblyResult:
        placement = self._placer.placement_for(
            MediaKind.VIDEO, target, manifest.original_name
        )
        input_path = f"{INCOMING_ROOT}/{manifest.upload_id}{suffix or '.bin'}"
        self._storage.upload(assembled.as_posix(), input_path)
        job = ProcessingJob(
            job_id=self._ids.generate(),
            client_id=manifest.client_id,
            input_path=input_path,
            original_name=manifest.original_name,
            size=size,
            content_type=manifest.content_type,
            resource=target.resource,
            owner_entity_id=str(target.owner_entity_id),
            field_name=target.field_name,
            folder_path=placement.folder_path,
            file_name=placement.file_name,
            quality=self._quality,
        )
        job_id = self._dispatcher.dispatch(job)
        logger.info(
            "Dispatched processing job %s for upload %s (client %s)",
            job_id,
            manifest.upload_id,
            manifest.client_id,
        )
        return AssemblyResult(
            status="processing",
            upload_id=manifest.upload_id,
            client_id=manifest.client_id,
            job_id=job_id,
        )
