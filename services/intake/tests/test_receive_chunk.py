from __future__ import annotations

import itertools

import pytest

from media_pipeline.catalog.assets import StoredAsset
from media_pipeline.media.classifier import MB, MediaClassifier, SizeLimitExceeded, SizePolicy
from media_pipeline.media.naming import PlacementResolver
from media_pipeline.storage import LocalFileStorage
from services.intake.application.dto import ReceiveChunkCommand
from services.intake.application.place_asset import PlaceAssetUseCase
from services.intake.application.receive_chunk import (
    IncompleteUpload,
    InvalidChunk,
    ReceiveChunkUseCase,
    UploadOwnershipError,
    chunk_folder,
)
from services.intake.domain.upload import UploadTarget
from services.intake.infrastructure.images import PillowImageEncoder
from services.intake.infrastructure.locks import InMemoryUploadLease


class FakeDispatcher:
    def __init__(self):
        self.jobs = []

    def dispatch(self, job):
        self.jobs.append(job)
        return job.job_id


class FakeAssets:
    def __init__(self):
        self.slots: dict[tuple[str, str, str], StoredAsset] = {}

    def get(self, resource, owner_entity_id, field_name):
        return self.slots.get((resource, owner_entity_id, field_name))

    def attach(self, asset):
        key = (asset.resource, asset.owner_entity_id, asset.field_name)
        previous = self.slots.get(key)
        self.slots[key] = asset
        return previous


class FakeEncoder:
    def encode(self, source):
        return b"webp:" + source.read_bytes(), b"thumb"


class FakeMetadata:
    def get_slug(self, resource, entity_id):
        return {"lesson": "intro-to-python"}.get(resource)

    def get_title(self, resource, entity_id):
        return None


class SequentialIds:
    def __init__(self, prefix="id"):
        self._counter = itertools.count(1)
        self._prefix = prefix

    def generate(self):
        return f"{self._prefix}{next(self._counter)}"


def _timestamps():
    counter = itertools.count(1_700_000_000_000)
    return lambda: next(counter)


def build_use_case(
    tmp_path,
    *,
    policy=None,
    lease=None,
    instance_id="node-a",
    accept_unknown_types=True,
):
    storage = LocalFileStorage(tmp_path / "store", public_base_url="https://cdn.test")
    assets = FakeAssets()
    dispatcher = FakeDispatcher()
    placer = PlaceAssetUseCase(
        storage=storage,
        assets=assets,
        resolver=PlacementResolver(timestamp=_timestamps()),
        image_encoder=FakeEncoder(),
        metadata=FakeMetadata(),
    )
    use_case = ReceiveChunkUseCase(
        storage=storage,
        classifier=MediaClassifier(policy),
        placer=placer,
        dispatcher=dispatcher,
        lease=lease or InMemoryUploadLease(),
        ids=SequentialIds(),
        instance_id=instance_id,
        accept_unknown_types=accept_unknown_types,
    )
    return use_case, storage, assets, dispatcher


def chunk(index, total, data, *, upload_id="up1", name="notes.pdf",
          content_type="application/pdf", resource="course", entity="7",
          field_name="syllabus", client_id="client-1"):
    return ReceiveChunkCommand(
        target=UploadTarget(resource=resource, owner_entity_id=entity, field_name=field_name),
        data=data,
        original_name=name,
        content_type=content_type,
        client_id=client_id,
        upload_id=upload_id,
        chunk_index=index,
        total_chunks=total,
    )


def test_chunks_are_assembled_in_order_on_final_index(tmp_path):
    use_case, storage, assets, _ = build_use_case(tmp_path)

    first = use_case.execute(chunk(0, 3, b"aaa"))
    second = use_case.execute(chunk(1, 3, b"bbb"))
    final = use_case.execute(chunk(2, 3, b"cc"))

    assert first.status == "received"
    assert second.received_chunks == 2
    assert final.status == "ok"
    item = final.item
    assert item["path"].startswith("uploads/docs/courses/")
    assert item["path"].endswith(".pdf")
    assert storage.read(item["path"]) == b"aaabbbcc"
    assert assets.get("course", "7", "syllabus").path == item["path"]
    assert not any(p.endswith(".part") for p in storage.list(chunk_folder("up1")))


def test_replayed_chunk_is_a_no_op(tmp_path):
    use_case, storage, _, _ = build_use_case(tmp_path)

    use_case.execute(chunk(0, 2, b"first"))
    use_case.execute(chunk(0, 2, b"other bytes"))
    result = use_case.execute(chunk(1, 2, b"-second"))

    assert storage.read(result.item["path"]) == b"first-second"


def test_replayed_final_chunk_returns_recorded_result(tmp_path):
    use_case, _, _, dispatcher = build_use_case(tmp_path)
    video = dict(name="lesson-42.mp4", content_type="video/mp4", resource="lesson", entity="42", field_name="video")

    use_case.execute(chunk(0, 2, b"x" * 10, **video))
    first = use_case.execute(chunk(1, 2, b"y" * 10, **video))
    replay = use_case.execute(chunk(1, 2, b"y" * 10, **video))

    assert first.status == "processing"
    assert replay.to_dict() == first.to_dict()
    assert len(dispatcher.jobs) == 1


def test_video_is_handed_to_the_processing_queue(tmp_path):
    use_case, storage, assets, dispatcher = build_use_case(tmp_path)
    video = dict(name="Lesson-42.MP4", content_type="video/mp4", resource="lesson", entity="42", field_name="video")

    use_case.execute(chunk(0, 2, b"0" * 8, **video))
    result = use_case.execute(chunk(1, 2, b"1" * 8, **video))

    assert result.status == "processing"
    assert result.client_id == "client-1"
    (job,) = dispatcher.jobs
    assert job.client_id == "client-1"
    assert job.input_path == "tmp/incoming/up1.mp4"
    assert storage.read(job.input_path) == b"0" * 8 + b"1" * 8
    assert job.folder_path == "uploads/media/lessons/lessons-42"
    assert job.file_name.startswith("intro-to-python-")
    assert job.file_name.endswith(".mp4")
    assert job.size == 16
    assert assets.slots == {}


def test_missing_part_raises_incomplete_upload(tmp_path):
    use_case, _, _, _ = build_use_case(tmp_path)

    use_case.execute(chunk(0, 3, b"a"))
    with pytest.raises(IncompleteUpload) as excinfo:
        use_case.execute(chunk(2, 3, b"c"))

    assert excinfo.value.missing == [1]


def test_total_mismatch_is_rejected(tmp_path):
    use_case, _, _, _ = build_use_case(tmp_path)

    use_case.execute(chunk(0, 3, b"a"))
    with pytest.raises(InvalidChunk):
        use_case.execute(chunk(1, 4, b"b"))


@pytest.mark.parametrize(
    "upload_id,index,total",
    [("../escape", 0, 2), ("ok", 2, 2), ("ok", -1, 2), ("ok", 0, 0)],
)
def test_malformed_chunk_metadata_is_rejected(tmp_path, upload_id, index, total):
    use_case, _, _, _ = build_use_case(tmp_path)

    with pytest.raises(InvalidChunk):
        use_case.execute(chunk(index, total, b"a", upload_id=upload_id))


def test_oversized_upload_is_rejected_and_discarded(tmp_path):
    policy = SizePolicy.from_megabytes(document=1)
    use_case, storage, _, _ = build_use_case(tmp_path, policy=policy)

    use_case.execute(chunk(0, 2, b"a" * MB))
    with pytest.raises(SizeLimitExceeded):
        use_case.execute(chunk(1, 2, b"b"))

    assert storage.list(chunk_folder("up1")) == []


def test_unknown_type_is_stored_when_allowed(tmp_path):
    use_case, storage, _, _ = build_use_case(tmp_path)

    result = use_case.execute(
        chunk(0, 1, b"blob", name="data.xyz", content_type="application/octet-stream")
    )

    assert result.item["path"].startswith("uploads/files/courses/")
    assert result.item["path"].endswith(".xyz")


def test_upload_owned_by_another_instance_is_refused(tmp_path):
    lease = InMemoryUploadLease()
    node_a, _, _, _ = build_use_case(tmp_path, lease=lease, instance_id="node-a")
    node_b, _, _, _ = build_use_case(tmp_path, lease=lease, instance_id="node-b")

    node_a.execute(chunk(0, 2, b"a"))
    with pytest.raises(UploadOwnershipError):
        node_b.execute(chunk(1, 2, b"b"))


def test_direct_transfer_is_treated_as_a_single_chunk(tmp_path):
    use_case, storage, _, _ = build_use_case(tmp_path)
    command = ReceiveChunkCommand(
        target=UploadTarget(resource="product", owner_entity_id="3", field_name="cover"),
        data=b"png-bytes",
        original_name="cover.png",
        content_type="image/png",
    )

    result = use_case.execute(command)

    assert result.status == "ok"
    assert result.upload_id == "id1"
    assert result.client_id == "id2"
    assert result.item["path"].startswith("images/products/cover-")
    assert result.item["path"].endswith(".webp")
    assert storage.read(result.item["path"]) == b"webp:png-bytes"
    assert result.item["thumbnailUrl"].startswith("https://cdn.test/images/products/thumbs/")


def test_replacing_an_asset_deletes_the_stale_files(tmp_path):
    use_case, storage, _, _ = build_use_case(tmp_path)

    old = use_case.execute(chunk(0, 1, b"old", upload_id="first"))
    new = use_case.execute(chunk(0, 1, b"new", upload_id="second"))

    assert not storage.exists(old.item["path"])
    assert storage.read(new.item["path"]) == b"new"


def test_svg_is_stored_as_uploaded(tmp_path):
    use_case, storage, _, _ = build_use_case(tmp_path)
    use_case._placer._image_encoder = PillowImageEncoder()
    svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="4" height="4"></svg>'

    result = use_case.execute(
        chunk(0, 1, svg, name="logo.svg", content_type="image/svg+xml",
              resource="brand", entity="5", field_name="logo")
    )

    assert result.status == "ok"
    assert result.item["path"].startswith("images/brands/")
    assert result.item["path"].endswith(".svg")
    assert result.item["contentType"] == "image/svg+xml"
    assert result.item["thumbnailUrl"] is None
    assert storage.read(result.item["path"]) == svg
