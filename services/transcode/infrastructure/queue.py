from __future__ import annotations

from redis import Redis
from rq import Queue, Worker as RQWorker

from ..config import TranscodeConfig


def create_redis_connection(config: TranscodeConfig) -> Redis:
    return Redis(host=config.redis_host, port=config.redis_port, db=config.redis_db)


def create_worker(config: TranscodeConfig, queue_name: str | None = None) -> RQWorker:
    redis_conn = create_redis_connection(config)
    queue = Queue(queue_name or config.queue_name, connection=redis_conn)
    return RQWorker([queue], connection=redis_conn)
