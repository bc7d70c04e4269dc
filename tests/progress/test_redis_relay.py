import json
from unittest.mock import MagicMock

from redis.exceptions import RedisError, WatchError

from media_pipeline.progress.events import ProgressEvent, ProgressSnapshot, Stage
from media_pipeline.progress.redis_relay import RedisProgressRelay


def make_relay(stored=None, watch_errors=0):
    client = MagicMock()
    pipe = MagicMock()
    client.pipeline.return_value.__enter__.return_value = pipe
    pipe.get.return_value = stored
    failures = [WatchError()] * watch_errors
    pipe.execute.side_effect = failures + [None]
    return RedisProgressRelay(client, ttl_seconds=3600), client, pipe


def test_publish_stores_snapshot_with_ttl_and_broadcasts():
    relay, _, pipe = make_relay()

    snapshot = relay.publish(ProgressEvent.stage_entered("c1", Stage.COMPRESSING))

    assert snapshot.stage is Stage.COMPRESSING
    key, value = pipe.set.call_args.args
    assert key == "upload:c1:progress"
    assert pipe.set.call_args.kwargs == {"ex": 3600}
    assert json.loads(value)["version"] == 1
    channel, message = pipe.publish.call_args.args
    assert channel == "upload:c1:events"
    assert json.loads(message)["type"] == "stage"


def test_stale_event_is_not_published():
    stored = json.dumps(
        ProgressSnapshot(client_id="c1", stage=Stage.ASSEMBLING, version=3).to_dict()
    ).encode()
    relay, _, pipe = make_relay(stored=stored)

    assert relay.publish(ProgressEvent.stage_entered("c1", Stage.COMPRESSING)) is None
    pipe.publish.assert_not_called()
    pipe.unwatch.assert_called_once()


def test_concurrent_update_is_retried():
    relay, _, pipe = make_relay(watch_errors=2)

    assert relay.publish(ProgressEvent.progressed("c1", 10)) is not None
    assert pipe.execute.call_count == 3


def test_redis_failure_is_logged_not_raised():
    relay, client, _ = make_relay()
    client.pipeline.side_effect = RedisError("down")

    assert relay.publish(ProgressEvent.done("c1")) is None


def test_snapshot_reads_and_tolerates_garbage():
    relay, client, _ = make_relay()
    client.get.return_value = b"not json"
    assert relay.snapshot("c1") is None

    client.get.return_value = json.dumps(
        ProgressSnapshot(client_id="c1", percent=40, version=2).to_dict()
    )
    assert relay.snapshot("c1").percent == 40


def test_subscribe_parses_channel_messages():
    relay, client, _ = make_relay()
    pubsub = client.pubsub.return_value
    seen = []

    subscription = relay.subscribe("c1", seen.append)
    handler = pubsub.subscribe.call_args.kwargs["upload:c1:events"]
    handler({"data": json.dumps(ProgressEvent.progressed("c1", 30).to_dict())})
    handler({"data": "garbage"})
    subscription.close()

    assert [e.percent for e in seen] == [30]
    pubsub.run_in_thread.assert_called_once()
    pubsub.run_in_thread.return_value.stop.assert_called_once()
    pubsub.close.assert_called_once()
