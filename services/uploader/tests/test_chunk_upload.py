from __future__ import annotations

import os

import pytest

from media_pipeline.media.classifier import MB, MediaClassifier, SizeLimitExceeded
from services.uploader.application.chunk_upload import ChunkUploadManager
from services.uploader.application.session_store import RESUME_PREFIX, UploadStateStore
from services.uploader.domain.errors import (
    ChunkTransmissionError,
    StructuralUploadError,
    UploadInProgress,
    UploadRejected,
)
from services.uploader.domain.session import UploadTarget
from services.uploader.infrastructure.state_store import InMemoryStore

KB = 1024
LESSON = UploadTarget(resource="lesson", item_id="42", field_name="video", title="Intro")


class FakeTransport:
    def __init__(self, failures=None, crash_at=None, final_status="processing"):
        self.calls = []
        self._failures = dict(failures or {})
        self._crash_at = crash_at
        self._final_status = final_status

    def send(self, target, data, *, file_name, content_type, client_id,
             upload_id=None, chunk_index=None, total_chunks=None):
        self.calls.append(
            {
                "upload_id": upload_id,
                "index": chunk_index,
                "total": total_chunks,
                "size": len(data),
                "client_id": client_id,
                "content_type": content_type,
            }
        )
        if self._crash_at == (chunk_index, total_chunks):
            raise RuntimeError("network gone")
        key = (chunk_index, total_chunks)
        if self._failures.get(key, 0) > 0:
            self._failures[key] -= 1
            raise ChunkTransmissionError("connection reset")
        if chunk_index is None or chunk_index == total_chunks - 1:
            return {"status": self._final_status, "uploadId": upload_id or "srv-1",
                    "item": {"path": "uploads/x"} if self._final_status == "ok" else None}
        return {"status": "received", "uploadId": upload_id, "chunkIndex": chunk_index}


class Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_file(tmp_path, size, name="lesson-42.mp4"):
    path = tmp_path / name
    path.write_bytes(os.urandom(size))
    return path


def make_manager(transport, *, store=None, clock=None, chunk_size=10 * KB,
                 min_chunk_size=1 * KB, ids=None, sleeps=None):
    clock = clock or Clock()
    state = UploadStateStore(store or InMemoryStore(), clock=clock)
    id_iter = iter(ids or [f"up-{n}" for n in range(1, 10)])
    manager = ChunkUploadManager(
        transport=transport,
        state=state,
        classifier=MediaClassifier(),
        ids=lambda: next(id_iter),
        chunk_size=chunk_size,
        min_chunk_size=min_chunk_size,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
        clock=clock,
    )
    return manager, state


def test_failing_chunk_degrades_to_small_chunks_with_a_new_upload_id(tmp_path):
    path = make_file(tmp_path, 250 * KB)
    transport = FakeTransport(failures={(15, 25): 3})
    sleeps = []
    store = InMemoryStore()
    manager, _ = make_manager(transport, store=store, sleeps=sleeps)
    progress = []

    outcome = manager.upload(
        path, LESSON, client_id="c1", owner="tab-1",
        on_progress=lambda sent, total: progress.append((sent, total)),
    )

    first = [c for c in transport.calls if c["total"] == 25]
    second = [c for c in transport.calls if c["total"] == 250]
    assert [c["index"] for c in first] == list(range(15)) + [15, 15, 15]
    assert {c["upload_id"] for c in first} == {"up-1"}
    assert [c["index"] for c in second] == list(range(250))
    assert {c["upload_id"] for c in second} == {"up-2"}
    assert {c["size"] for c in second} == {1 * KB}
    assert sleeps == [1.0, 2.0]
    assert outcome.processing
    assert progress[-1] == (250, 250)
    assert store.keys(RESUME_PREFIX) == []


def test_second_structural_failure_is_fatal(tmp_path):
    path = make_file(tmp_path, 50 * KB)
    transport = FakeTransport(failures={(1, 5): 3, (7, 50): 3})
    manager, _ = make_manager(transport)

    with pytest.raises(StructuralUploadError) as info:
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert isinstance(info.value.last_error, ChunkTransmissionError)
    assert transport.calls[-1]["total"] == 50


def test_no_degrade_when_already_at_minimum_chunk_size(tmp_path):
    path = make_file(tmp_path, 5 * KB)
    transport = FakeTransport(failures={(2, 5): 3})
    manager, _ = make_manager(transport, chunk_size=1 * KB, min_chunk_size=1 * KB)

    with pytest.raises(StructuralUploadError):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert {c["total"] for c in transport.calls} == {5}


def test_interrupted_upload_resumes_at_the_persisted_cursor(tmp_path):
    path = make_file(tmp_path, 50 * KB)
    store = InMemoryStore()
    clock = Clock()
    crashing = FakeTransport(crash_at=(3, 5))
    manager, _ = make_manager(crashing, store=store, clock=clock)
    with pytest.raises(RuntimeError, match="network gone"):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    clock.now += 60
    transport = FakeTransport()
    manager, _ = make_manager(transport, store=store, clock=clock, ids=["fresh"])
    outcome = manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert [c["index"] for c in transport.calls] == [3, 4]
    assert {c["upload_id"] for c in transport.calls} == {"up-1"}
    assert outcome.processing


def test_changed_file_discards_resume_state(tmp_path):
    path = make_file(tmp_path, 50 * KB)
    store = InMemoryStore()
    manager, _ = make_manager(FakeTransport(crash_at=(3, 5)), store=store)
    with pytest.raises(RuntimeError):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    path.write_bytes(os.urandom(50 * KB))
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))
    transport = FakeTransport()
    manager, _ = make_manager(transport, store=store, ids=["fresh"])
    manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert transport.calls[0]["index"] == 0
    assert transport.calls[0]["upload_id"] == "fresh"


def test_stale_resume_state_is_ignored(tmp_path):
    path = make_file(tmp_path, 50 * KB)
    store = InMemoryStore()
    clock = Clock()
    manager, _ = make_manager(FakeTransport(crash_at=(3, 5)), store=store, clock=clock)
    with pytest.raises(RuntimeError):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    clock.now += 6 * 3600
    transport = FakeTransport()
    manager, _ = make_manager(transport, store=store, clock=clock, ids=["fresh"])
    manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert transport.calls[0]["index"] == 0


def test_small_file_goes_out_as_one_direct_request(tmp_path):
    path = make_file(tmp_path, 4 * KB, name="cover.png")
    transport = FakeTransport(final_status="ok")
    manager, _ = make_manager(transport)

    outcome = manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert len(transport.calls) == 1
    assert transport.calls[0]["upload_id"] is None
    assert transport.calls[0]["content_type"] == "image/png"
    assert outcome.status == "done"
    assert outcome.item == {"path": "uploads/x"}


def test_direct_request_exhaustion_does_not_degrade(tmp_path):
    path = make_file(tmp_path, 4 * KB)
    transport = FakeTransport(failures={(None, None): 3})
    manager, _ = make_manager(transport)

    with pytest.raises(StructuralUploadError):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert len(transport.calls) == 3


def test_rejection_is_not_retried(tmp_path):
    class RejectingTransport(FakeTransport):
        def send(self, *args, **kwargs):
            super().send(*args, **kwargs)
            raise UploadRejected(415, "Unsupported file type")

    path = make_file(tmp_path, 50 * KB)
    transport = RejectingTransport()
    manager, _ = make_manager(transport)

    with pytest.raises(UploadRejected):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert len(transport.calls) == 1


def test_oversized_image_is_refused_before_any_request(tmp_path):
    path = tmp_path / "poster.jpg"
    with path.open("wb") as handle:
        handle.truncate(60 * MB)
    transport = FakeTransport()
    manager, _ = make_manager(transport)

    with pytest.raises(SizeLimitExceeded):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert transport.calls == []


def test_live_lease_of_another_client_blocks_the_upload(tmp_path):
    path = make_file(tmp_path, 50 * KB)
    store = InMemoryStore()
    transport = FakeTransport()
    manager, state = make_manager(transport, store=store)
    state.acquire_lease(LESSON.key, "tab-2")

    with pytest.raises(UploadInProgress):
        manager.upload(path, LESSON, client_id="c1", owner="tab-1")

    assert transport.calls == []
