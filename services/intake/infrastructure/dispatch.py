from __future__ import annotations

import logging

from redis import Redis
from rq import Queue

from media_pipeline.jobs import ProcessingJob

LOGGER = logging.getLogger(__name__)

PROCESS_MEDIA_FUNCTION = "services.transcode.worker.process_media"


class RqJobDispatcher:
    """Enqueues processing jobs by import path so intake never loads the worker."""

    def __init__(self, queue: Queue, *, job_timeout: int = 3600) -> None:
        self._queue = queue
        self._job_timeout = job_timeout

    def dispatch(self, job: ProcessingJob) -> str:
        enqueued = self._queue.enqueue(
            PROCESS_MEDIA_FUNCTION,
            job.to_payload(),
            job_id=job.job_id,
            job_timeout=self._job_timeout,
        )
        LOGGER.info(
            "Enqueued job id=%s on %s for client=%s",
            enqueued.id,
            self._queue.name,
            job.client_id,
        )
        return enqueued.id


def create_queue(*, host: str, port: int, db: int, queue_name: str) -> Queue:
    return Queue(queue_name, connection=Redis(host=host, port=port, db=db))
