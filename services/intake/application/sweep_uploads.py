from __future__ import annotations

import json
import logging
import time
from typing import Callable

from media_pipeline.storage import Storage

from services.intake.application.receive_chunk import CHUNK_ROOT, MANIFEST_NAME
from services.intake.domain.upload import UploadManifest

logger = logging.getLogger(__name__)


class SweepStaleUploadsUseCase:
    """Drops chunk folders whose manifest has not been touched within max_age."""

    def __init__(
        self,
        *,
        storage: Storage,
        max_age_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._max_age = max_age_seconds
        self._clock = clock

    def execute(self) -> list[str]:
        cutoff = self._clock() - self._max_age
        removed: list[str] = []
        for path in self._storage.list(CHUNK_ROOT):
            if not path.endswith(f"/{MANIFEST_NAME}"):
                continue
            folder = path.rsplit("/", 1)[0]
            try:
                manifest = UploadManifest.from_dict(json.loads(self._storage.read(path)))
            except (KeyError, ValueError) as exc:
                logger.warning("Unreadable manifest %s: %s", path, exc)
                continue
            if manifest.updated_at < cutoff:
                self._storage.delete(folder)
                removed.append(manifest.upload_id)
        if removed:
            logger.info("Removed %d stale uploads", len(removed))
        return removed
