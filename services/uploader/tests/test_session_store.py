from __future__ import annotations

import pytest

from services.uploader.application.session_store import (
    LEASE_PREFIX,
    RESUME_PREFIX,
    SESSION_PREFIX,
    UploadStateStore,
)
from services.uploader.domain.errors import UploadInProgress
from services.uploader.domain.session import (
    ResumeState,
    UploadSession,
    UploadStatus,
    UploadTarget,
)
from services.uploader.infrastructure.state_store import InMemoryStore

TARGET = UploadTarget(resource="lesson", item_id="42", field_name="video")


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def cursor(**overrides):
    values = dict(
        upload_id="up-1",
        chunk_size=10,
        total_chunks=25,
        next_chunk_index=16,
        file_fingerprint="lesson-42.mp4:250:1",
        updated_at=1000.0,
    )
    values.update(overrides)
    return ResumeState(**values)


def load(state):
    return state.load_resume(
        TARGET.key, fingerprint="lesson-42.mp4:250:1", chunk_size=10, total_chunks=25
    )


def test_matching_cursor_is_returned():
    state = UploadStateStore(InMemoryStore(), clock=Clock(1000.0 + 3600))
    state.save_resume(TARGET.key, cursor())

    assert load(state) == cursor()


@pytest.mark.parametrize(
    "overrides",
    [
        {"file_fingerprint": "lesson-42.mp4:250:2"},
        {"chunk_size": 1},
        {"total_chunks": 250},
        {"next_chunk_index": 0},
        {"next_chunk_index": 25},
        {"updated_at": 1000.0 - 6 * 3600},
    ],
)
def test_unusable_cursor_is_discarded(overrides):
    store = InMemoryStore()
    state = UploadStateStore(store, clock=Clock())
    state.save_resume(TARGET.key, cursor(**overrides))

    assert load(state) is None
    assert store.get(RESUME_PREFIX + TARGET.key) is None


def test_corrupt_cursor_is_discarded():
    store = InMemoryStore()
    store.set(RESUME_PREFIX + TARGET.key, {"uploadId": "up-1"})
    state = UploadStateStore(store, clock=Clock())

    assert load(state) is None
    assert store.keys() == []


def test_session_record_layout_and_round_trip():
    store = InMemoryStore()
    state = UploadStateStore(store, clock=Clock())
    session = UploadSession(
        client_id="c1",
        target=TARGET,
        file_name="lesson-42.mp4",
        file_size=250,
        status=UploadStatus.UPLOADING,
        progress=40,
        message="Uploading part 10 of 25",
        updated_at=1000.0,
    )

    state.save_session(session)

    record = store.get(SESSION_PREFIX + "lesson:42:video")
    assert record["clientId"] == "c1"
    assert record["snapshot"]["status"] == "uploading"
    assert state.load_session(TARGET.key) == session
    assert state.find_session("c1") == session


def test_clear_removes_session_and_cursor():
    store = InMemoryStore()
    state = UploadStateStore(store, clock=Clock())
    state.save_session(UploadSession("c1", TARGET, "a.mp4", 1))
    state.save_resume(TARGET.key, cursor())

    state.clear(TARGET.key)

    assert store.keys() == []


def test_clear_for_an_older_upload_keeps_the_current_record():
    store = InMemoryStore()
    state = UploadStateStore(store, clock=Clock())
    state.save_session(UploadSession("c2", TARGET, "b.mp4", 1))
    state.save_resume(TARGET.key, cursor())

    assert state.clear(TARGET.key, "c1") is False
    assert state.load_session(TARGET.key).client_id == "c2"
    assert store.get(RESUME_PREFIX + TARGET.key) is not None

    assert state.clear(TARGET.key, "c2") is True
    assert store.keys() == []


def test_lease_blocks_other_owner_until_expiry():
    clock = Clock()
    store = InMemoryStore()
    state = UploadStateStore(store, lease_ttl_seconds=300, clock=clock)
    state.acquire_lease(TARGET.key, "tab-1")

    with pytest.raises(UploadInProgress):
        state.acquire_lease(TARGET.key, "tab-2")

    state.renew_lease(TARGET.key, "tab-1")
    assert store.get(LEASE_PREFIX + TARGET.key) == {"owner": "tab-1", "expiresAt": 1300.0}

    clock.now += 301
    state.acquire_lease(TARGET.key, "tab-2")
    assert store.get(LEASE_PREFIX + TARGET.key)["owner"] == "tab-2"


def test_release_only_drops_own_lease():
    store = InMemoryStore()
    state = UploadStateStore(store, clock=Clock())
    state.acquire_lease(TARGET.key, "tab-1")

    state.release_lease(TARGET.key, "tab-2")
    assert store.get(LEASE_PREFIX + TARGET.key) is not None

    state.release_lease(TARGET.key, "tab-1")
    assert store.get(LEASE_PREFIX + TARGET.key) is None
