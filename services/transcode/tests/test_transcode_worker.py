
import pytest

from media_pipeline.catalog.assets import StoredAsset
from media_pipeline.jobs import ProcessingJob
from services.transcode import worker

PAYLOAD = {
    "job_id": "job-1",
    "client_id": "client-1",
    "input_path": "tmp/incoming/up1.mp4",
    "original_name": "lesson-42.mp4",
    "size": 262144000,
    "content_type": "video/mp4",
    "resource": "lesson",
    "owner_entity_id": "42",
    "field_name": "video",
    "folder_path": "uploads/media/lessons/lessons-42",
    "file_name": "intro-1700000000000.mp4",
    "quality": "medium",
}


class FakeConfig:
    queue_name = "media"
    redis_host = "localhost"
    redis_port = 6379
    redis_db = 0
    job_timeout_seconds = 3600


def test_process_media_roundtrip(monkeypatch):
    captured = {}

    class FakeUseCase:
        def execute(self, job: ProcessingJob):
            captured["job"] = job
            return StoredAsset(
                resource=job.resource,
                owner_entity_id=job.owner_entity_id,
                field_name=job.field_name,
                kind="video",
                path=job.output_path,
                url=f"/media/{job.output_path}",
            )

    monkeypatch.setattr(worker, "get_use_case", lambda: FakeUseCase())

    item = worker.process_media(PAYLOAD)

    job = captured["job"]
    assert job.client_id == "client-1"
    assert job.size == 262144000
    assert job.thumbnail_path == "uploads/media/lessons/lessons-42/intro-1700000000000-thumb.jpg"
    assert item["path"] == "uploads/media/lessons/lessons-42/intro-1700000000000.mp4"


def test_process_media_failure_bubbles(monkeypatch):
    class FakeUseCase:
        def execute(self, job):
            raise RuntimeError("download failed")

    monkeypatch.setattr(worker, "get_use_case", lambda: FakeUseCase())

    with pytest.raises(RuntimeError):
        worker.process_media(PAYLOAD)


def test_load_config_reads_environment(monkeypatch):
    monkeypatch.setenv("TRANSCODE_DATABASE_URL", "sqlite:///media.db")
    monkeypatch.setenv("TRANSCODE_MODE", "off")
    monkeypatch.setenv("TRANSCODE_MIN_SIZE_MB", "10")
    monkeypatch.setattr(worker, "_CONFIG", None)

    cfg = worker.get_config()

    assert cfg.transcode_mode == "off"
    assert cfg.min_transcode_mb == 10
    assert cfg.queue_name == "media"


def test_run_worker_invokes_work(monkeypatch):
    called = {}

    def fake_build_worker(cfg, queue_name=None):
        called["queue_name"] = queue_name

        class _Worker:
            def work(self_inner):
                called["worked"] = True

        return _Worker()

    monkeypatch.setattr(worker, "get_config", lambda: FakeConfig())
    monkeypatch.setattr(worker, "build_worker", fake_build_worker)

    worker.run_worker(queue_name="media")

    assert called.get("worked")
    assert called.get("queue_name") == "media"
