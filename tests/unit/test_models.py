import re

import pytest
from pydantic import ValidationError

from models import Event, EventBatch, PageContext, PlaybackState
from utils import generate_uuid, iso_now

UUID_V4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


def _event(**overrides):
    fields = dict(
        event_name="seeked",
        video_id="v1",
        session_id="s1",
        user_id=None,
        anonymous_id="a1",
        playback_state=PlaybackState(current_time=12.5, duration=300.0, paused=False, network_state=1, ready_state=4),
        context=PageContext(page_url="https://example.test/watch", referrer="", page_title="Watch"),
    )
    fields.update(overrides)
    return Event(**fields)


def test_generate_uuid_is_v4_shaped():
    ids = {generate_uuid() for _ in range(200)}
    assert len(ids) == 200
    assert all(UUID_V4.match(value) for value in ids)


def test_iso_now_is_utc_with_milliseconds():
    assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$", iso_now())


def test_event_is_immutable():
    event = _event()
    with pytest.raises(ValidationError):
        event.event_name = "play"


def test_event_wire_names_are_camel_case():
    data = _event(custom_data="chapter-2").to_dict()

    assert data["eventName"] == "seeked"
    assert data["videoId"] == "v1"
    assert data["anonymousId"] == "a1"
    assert data["userId"] is None
    assert data["customData"] == "chapter-2"
    assert data["playbackState"]["currentTime"] == 12.5
    assert data["playbackState"]["readyState"] == 4
    assert data["context"]["pageUrl"] == "https://example.test/watch"


def test_event_omits_missing_custom_data():
    assert "customData" not in _event().to_dict()


def test_event_accepts_camel_case_input():
    event = Event.model_validate({
        "eventName": "play",
        "videoId": "v9",
        "timestamp": "2024-05-01T10:00:00.000Z",
        "sessionId": "s1",
        "userId": "u1",
        "anonymousId": "a1",
        "playbackState": {"currentTime": 1.0, "paused": False},
    })
    assert event.video_id == "v9"
    assert event.playback_state.current_time == 1.0
    assert event.timestamp == "2024-05-01T10:00:00.000Z"


def test_retry_attempt_only_sent_for_retries():
    normal = EventBatch.assemble("c1", None, "s1", [_event()])
    retry = EventBatch.assemble("c1", None, "s1", [_event()], is_retry=True, retry_attempt=3)

    assert normal.to_dict()["isRetry"] is False
    assert "retryAttempt" not in normal.to_dict()
    assert retry.to_dict()["isRetry"] is True
    assert retry.to_dict()["retryAttempt"] == 3


def test_batch_json_round_trip_preserves_fields():
    batch = EventBatch.assemble(
        "c1", "key-1", "s1", [_event(), _event(event_name="pause", custom_data="x")],
        is_retry=True, retry_attempt=2,
    )

    decoded = EventBatch.from_json(batch.to_json())

    assert decoded == batch
    assert [event.event_name for event in decoded.events] == ["seeked", "pause"]


def test_independent_batches_get_distinct_batch_ids():
    events = [_event(), _event(event_name="pause")]
    first = EventBatch.assemble("c1", None, "s1", events)
    second = EventBatch.assemble("c1", None, "s1", events)

    assert first.events == second.events
    assert first.batch_id != second.batch_id
    assert UUID_V4.match(first.batch_id)
