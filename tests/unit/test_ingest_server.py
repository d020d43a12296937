import orjson
import pytest
from fastapi.testclient import TestClient

import ingest_server
from conftest import build_batch, make_event


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(ingest_server.settings, "event_log_dir", str(tmp_path), raising=False)
    with TestClient(ingest_server.app) as test_client:
        yield test_client


def _records():
    return [orjson.loads(line) for line in ingest_server.event_log.path.read_text().splitlines()]


def test_batch_is_persisted_and_acknowledged(client):
    batch = build_batch([make_event("play"), make_event("pause")])

    response = client.post(
        "/api/v1/events",
        content=batch.to_json(),
        headers={"Content-Type": "application/json", "X-Analytics-Client": "VideoAnalytics-SDK/1.0.0"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "success", "message": "Processed 2 events"}

    records = _records()
    assert [record["event"]["eventName"] for record in records] == ["play", "pause"]
    assert all(record["batchId"] == batch.batch_id for record in records)
    assert all(record["clientId"] == "c1" for record in records)
    assert records[0]["source"] == "batch"


def test_log_is_append_only_across_batches(client):
    client.post("/api/v1/events", content=build_batch([make_event("play")]).to_json())
    client.post("/api/v1/events", content=build_batch([make_event("ended")]).to_json())

    assert [record["event"]["eventName"] for record in _records()] == ["play", "ended"]


def test_beacon_returns_no_content(client):
    batch = build_batch([make_event("seeking"), make_event("pageUnload", video_id=None)])

    response = client.post("/api/v1/events/beacon", content=batch.to_json())

    assert response.status_code == 204
    assert response.content == b""
    records = _records()
    assert [record["source"] for record in records] == ["beacon", "beacon"]
    assert records[1]["event"]["videoId"] is None


@pytest.mark.parametrize("path", ["/api/v1/events", "/api/v1/events/beacon"])
@pytest.mark.parametrize("body", [b"{not json", b"[1, 2, 3]", b'{"events": "play"}', b'{"events": [1]}', b'{"clientId": 42}'])
def test_malformed_body_is_rejected(client, path, body):
    response = client.post(path, content=body)

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request"
    assert _records() == []


@pytest.mark.parametrize("path", ["/api/v1/events", "/api/v1/events/beacon"])
def test_wrong_method_is_rejected(client, path):
    response = client.get(path)

    assert response.status_code == 405
    assert response.headers["Allow"] == "POST"


def test_health_reports_log_path(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["event_log"] == str(ingest_server.event_log.path)


def test_events_are_logged_exactly_as_sent(client):
    event = {
        "eventName": "play",
        "videoId": "video-1",
        "sessionId": "s1",
        "anonymousId": "a1",
        "playbackState": {"currentTime": 3.5, "bitrate": 2400},
        "context": {"pageUrl": "https://example.test/", "campaign": "spring"},
    }
    body = orjson.dumps({"clientId": "c1", "sessionId": "s1", "batchId": "b1", "events": [event]})

    response = client.post("/api/v1/events", content=body)

    assert response.status_code == 200
    assert _records()[0]["event"] == event


def test_batch_missing_identifiers_is_accepted(client):
    event = {"eventName": "pause", "videoId": "video-1"}

    response = client.post("/api/v1/events", content=orjson.dumps({"events": [event]}))

    assert response.status_code == 200
    assert response.json() == {"status": "success", "message": "Processed 1 events"}
    record = _records()[0]
    assert record["clientId"] is None
    assert record["event"] == event


def test_batch_without_events_is_acknowledged(client):
    response = client.post("/api/v1/events", content=b'{"clientId": "c1"}')

    assert response.status_code == 200
    assert response.json()["message"] == "Processed 0 events"
    assert _records() == []
