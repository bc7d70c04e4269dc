from media_pipeline.progress.events import (
    EventKind,
    ProgressEvent,
    ProgressSnapshot,
    Stage,
    clamp_percent,
)


def fold(*events):
    snapshot = ProgressSnapshot(client_id="c1", updated_at=0.0)
    for event in events:
        snapshot = snapshot.apply(event) or snapshot
    return snapshot


def test_stage_entry_resets_percent_and_sets_message():
    snapshot = fold(
        ProgressEvent.stage_entered("c1", Stage.COMPRESSING),
        ProgressEvent.progressed("c1", 80),
        ProgressEvent.stage_entered("c1", Stage.GENERATING_ASSETS),
    )

    assert snapshot.stage is Stage.GENERATING_ASSETS
    assert snapshot.percent == 0
    assert snapshot.message == "Generating thumbnail and previews..."
    assert snapshot.version == 3


def test_events_behind_the_snapshot_are_no_ops():
    snapshot = fold(
        ProgressEvent.stage_entered("c1", Stage.GENERATING_ASSETS),
        ProgressEvent.progressed("c1", 40),
    )

    assert snapshot.apply(ProgressEvent.stage_entered("c1", Stage.COMPRESSING)) is None
    assert snapshot.apply(ProgressEvent.stage_entered("c1", Stage.GENERATING_ASSETS)) is None
    assert snapshot.apply(ProgressEvent.progressed("c1", 40)) is None
    assert snapshot.apply(ProgressEvent.progressed("c1", 10)) is None


def test_nothing_applies_after_a_terminal_event():
    snapshot = fold(ProgressEvent.failed("c1", "boom"))

    assert snapshot.terminal
    assert snapshot.status == "error"
    assert snapshot.apply(ProgressEvent.done("c1")) is None
    assert snapshot.apply(ProgressEvent.stage_entered("c1", Stage.ASSEMBLING)) is None


def test_snapshot_replays_as_events():
    snapshot = fold(
        ProgressEvent.stage_entered("c1", Stage.COMPRESSING),
        ProgressEvent.progressed("c1", 55),
    )

    replayed = fold(*snapshot.as_events())

    assert [e.kind for e in snapshot.as_events()] == [EventKind.STAGE, EventKind.PROGRESS]
    assert (replayed.stage, replayed.percent) == (Stage.COMPRESSING, 55)


def test_wire_format_uses_camel_case_keys():
    event = ProgressEvent.progressed("c1", 120.7)

    payload = event.to_dict()

    assert payload["type"] == "progress"
    assert payload["clientId"] == "c1"
    assert payload["percent"] == 100
    assert ProgressEvent.from_dict(payload) == event
    assert clamp_percent(-3) == 0
