import pytest

from media_pipeline.media.classifier import (
    GB,
    MB,
    MediaClassifier,
    MediaKind,
    SizeLimitExceeded,
    SizePolicy,
    UnsupportedType,
    classify,
)


@pytest.mark.parametrize(
    "content_type,file_name,expected",
    [
        ("image/jpeg", "cover.jpg", MediaKind.IMAGE),
        ("video/mp4", "lesson-42.mp4", MediaKind.VIDEO),
        ("video/x-flv", None, MediaKind.VIDEO),
        ("audio/mpeg; charset=binary", None, MediaKind.AUDIO),
        ("application/pdf", "syllabus.pdf", MediaKind.DOCUMENT),
        ("application/octet-stream", "clip.MOV", MediaKind.VIDEO),
        (None, "notes.txt", MediaKind.DOCUMENT),
        ("application/octet-stream", "blob.xyz", MediaKind.OTHER),
    ],
)
def test_classify_uses_mime_then_extension(content_type, file_name, expected):
    assert classify(content_type, file_name) is expected


def test_declared_type_wins_over_extension():
    assert classify("image/png", "actually.mp4") is MediaKind.IMAGE


def test_unknown_type_raises_when_a_concrete_kind_is_required():
    with pytest.raises(UnsupportedType):
        classify("application/x-unknown", "blob.xyz", require_concrete=True)


def test_sixty_megabyte_image_is_rejected():
    classifier = MediaClassifier()

    with pytest.raises(SizeLimitExceeded) as info:
        classifier.admit(content_type="image/jpeg", file_name="poster.jpg", size=60 * MB)

    assert info.value.kind is MediaKind.IMAGE
    assert info.value.ceiling == 50 * MB


def test_video_ceiling_is_exclusive():
    classifier = MediaClassifier()

    with pytest.raises(SizeLimitExceeded):
        classifier.admit(content_type="video/mp4", file_name="big.mp4", size=8 * GB)

    kind = classifier.admit(
        content_type="video/mp4", file_name="big.mp4", size=int(7.9 * GB)
    )
    assert kind is MediaKind.VIDEO


def test_policy_overrides_from_megabytes():
    policy = SizePolicy.from_megabytes(image=5)

    assert policy.ceiling(MediaKind.IMAGE) == 5 * MB
    assert policy.ceiling(MediaKind.VIDEO) == 8 * GB
    with pytest.raises(SizeLimitExceeded):
        policy.check(MediaKind.IMAGE, 5 * MB)
