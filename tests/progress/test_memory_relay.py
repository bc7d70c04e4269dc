from media_pipeline.progress.events import EventKind, ProgressEvent, Stage
from media_pipeline.progress.relay import InMemoryProgressRelay, ProgressEmitter, sync


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_subscribers_receive_their_own_events_in_order():
    relay = InMemoryProgressRelay()
    mine, other = [], []
    relay.subscribe("c1", mine.append)
    relay.subscribe("c2", other.append)
    emitter = ProgressEmitter(relay, "c1")

    emitter.stage(Stage.COMPRESSING)
    emitter.progress(10)
    emitter.progress(5)
    emitter.done()

    assert [e.kind for e in mine] == [EventKind.STAGE, EventKind.PROGRESS, EventKind.DONE]
    assert other == []


def test_emitter_without_client_id_is_silent():
    relay = InMemoryProgressRelay()

    ProgressEmitter(relay, None).stage(Stage.COMPRESSING)

    assert relay.snapshot("") is None


def test_closed_subscription_stops_delivery():
    relay = InMemoryProgressRelay()
    seen = []
    subscription = relay.subscribe("c1", seen.append)

    subscription.close()
    subscription.close()
    relay.publish(ProgressEvent.stage_entered("c1", Stage.COMPRESSING))

    assert seen == []
    assert relay.subscriber_count("c1") == 0


def test_failing_subscriber_is_dropped_without_affecting_others():
    relay = InMemoryProgressRelay()
    seen = []

    def broken(event):
        raise RuntimeError("socket closed")

    relay.subscribe("c1", broken)
    relay.subscribe("c1", seen.append)

    relay.publish(ProgressEvent.stage_entered("c1", Stage.COMPRESSING))
    relay.publish(ProgressEvent.progressed("c1", 30))

    assert len(seen) == 2
    assert relay.subscriber_count("c1") == 1


def test_late_joiner_syncs_from_snapshot():
    relay = InMemoryProgressRelay()
    relay.publish(ProgressEvent.stage_entered("c1", Stage.COMPRESSING))
    relay.publish(ProgressEvent.progressed("c1", 64))
    seen = []

    snapshot = sync(relay, "c1", seen.append)

    assert snapshot.version == 2
    assert [(e.kind, e.stage, e.percent) for e in seen] == [
        (EventKind.STAGE, Stage.COMPRESSING, None),
        (EventKind.PROGRESS, None, 64),
    ]
    assert sync(relay, "nobody", seen.append) is None


def test_terminal_snapshots_expire_after_retention():
    clock = Clock()
    relay = InMemoryProgressRelay(terminal_retention_seconds=3600, clock=clock)
    relay.publish(ProgressEvent(EventKind.DONE, "c1", timestamp=clock.now))

    clock.now += 3599
    assert relay.snapshot("c1").status == "done"

    clock.now += 2
    assert relay.snapshot("c1") is None
