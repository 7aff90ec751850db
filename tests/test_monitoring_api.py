"""Stream, pending alert and alert API flow tests."""

from typing import Any

import anyio
import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from libs.core.application.broadcaster import EventBroadcaster
from services.api_gateway.app import app
from services.api_gateway.dependencies import reset_state
from services.api_gateway.presentation.http.routes import _pump_events

client = TestClient(app)


def setup_function() -> None:
    reset_state()


def teardown_function() -> None:
    reset_state()


def _create_stream(url: str = "rtsp://cam-1/live", location: str = "Main Street") -> str:
    response = client.post(
        "/v1/streams",
        json={
            "url": url,
            "location": location,
            "coordinates": {"latitude": 40.7589, "longitude": -73.9851},
            "tags": ["downtown"],
        },
    )
    assert response.status_code == 201
    return response.json()["stream_id"]


def _create_pending_alert(
    stream_id: str,
    severity: str = "high",
    confidence: float = 0.85,
) -> dict[str, Any]:
    response = client.post(
        "/v1/pending-alerts",
        json={
            "stream_id": stream_id,
            "confidence": confidence,
            "detection": {
                "severity": severity,
                "location": "Main Street",
                "frame_timestamp": "2025-11-15T18:30:00+00:00",
                "accident_count": 1,
                "accidents": [
                    {
                        "vehicle1": "car",
                        "vehicle2": "truck",
                        "confidence": confidence,
                        "distance": 40.0,
                        "severity": severity,
                        "location": [120.0, 100.0],
                    }
                ],
                "bounding_boxes": [
                    {
                        "object_id": "car-1-0",
                        "label": "car",
                        "confidence": 0.95,
                        "bbox": [80.0, 80.0, 40.0, 40.0],
                    }
                ],
            },
        },
    )
    assert response.status_code == 201
    return response.json()


def _approve(pending_alert_id: str, approved_by: str = "operator") -> dict[str, Any]:
    response = client.post(
        f"/v1/pending-alerts/{pending_alert_id}/approve",
        json={"approved_by": approved_by},
    )
    assert response.status_code == 200
    return response.json()


def test_stream_crud_flow() -> None:
    stream_id = _create_stream(url="  rtsp://cam-1/live  ")

    created = client.get(f"/v1/streams/{stream_id}").json()
    assert created["url"] == "rtsp://cam-1/live"
    assert created["status"] == "inactive"
    assert created["monitoring_active"] is False
    assert created["accident_count"] == 0
    assert created["coordinates"] == {"latitude": 40.7589, "longitude": -73.9851}
    assert created["tags"] == ["downtown"]

    update_response = client.put(
        f"/v1/streams/{stream_id}",
        json={"location": "Broadway & 42nd", "description": "north-facing"},
    )
    assert update_response.status_code == 200
    updated = update_response.json()
    assert updated["location"] == "Broadway & 42nd"
    assert updated["description"] == "north-facing"
    assert updated["url"] == "rtsp://cam-1/live"

    listed = client.get("/v1/streams").json()
    assert [item["stream_id"] for item in listed] == [stream_id]
    assert client.get("/v1/streams", params={"status": "active"}).json() == []

    delete_response = client.delete(f"/v1/streams/{stream_id}")
    assert delete_response.status_code == 200
    assert client.get(f"/v1/streams/{stream_id}").status_code == 404
    assert client.delete(f"/v1/streams/{stream_id}").status_code == 404


def test_create_stream_validates_fields() -> None:
    response = client.post("/v1/streams", json={"url": "", "location": "Main Street"})

    assert response.status_code == 422


def test_update_missing_stream_returns_404() -> None:
    response = client.put("/v1/streams/missing", json={"location": "Elsewhere"})

    assert response.status_code == 404


def test_start_and_stop_monitoring() -> None:
    stream_id = _create_stream()

    start_response = client.post(f"/v1/streams/{stream_id}/start")
    second_start = client.post(f"/v1/streams/{stream_id}/start")
    stop_response = client.post(f"/v1/streams/{stream_id}/stop")
    second_stop = client.post(f"/v1/streams/{stream_id}/stop")

    assert start_response.status_code == 200
    assert start_response.json()["stream"]["status"] == "active"
    assert start_response.json()["stream"]["monitoring_active"] is True
    assert second_start.status_code == 409
    assert stop_response.status_code == 200
    assert stop_response.json()["stream"]["status"] == "inactive"
    assert stop_response.json()["stream"]["monitoring_active"] is False
    assert second_stop.status_code == 200


def test_start_and_stop_unknown_stream_return_404() -> None:
    assert client.post("/v1/streams/missing/start").status_code == 404
    assert client.post("/v1/streams/missing/stop").status_code == 404


def test_latest_detection_before_first_tick() -> None:
    stream_id = _create_stream()

    response = client.get(f"/v1/streams/{stream_id}/detections/latest")

    assert response.status_code == 200
    assert response.json() is None
    assert client.get("/v1/streams/missing/detections/latest").status_code == 404


def test_pending_alert_for_unknown_stream_returns_404() -> None:
    response = client.post(
        "/v1/pending-alerts",
        json={"stream_id": "missing", "detection": {}},
    )

    assert response.status_code == 404


def test_approve_flow_creates_alert() -> None:
    stream_id = _create_stream()
    client.post(f"/v1/streams/{stream_id}/start")
    pending = _create_pending_alert(stream_id)

    assert pending["status"] == "pending"
    assert pending["detection"]["severity"] == "high"
    count = client.get("/v1/pending-alerts/stats/pending-count").json()
    assert count == {"pending_count": 1}

    body = _approve(pending["pending_alert_id"])

    assert body["pending_alert"]["status"] == "approved"
    assert body["pending_alert"]["approved_by"] == "operator"
    alert = body["alert"]
    assert alert["status"] == "sent"
    assert alert["type"] == "accident"
    assert alert["severity"] == "high"
    assert alert["confidence"] == 0.85
    assert alert["pending_alert_id"] == pending["pending_alert_id"]
    assert alert["description"] == "Accident detected with 0.85 confidence"
    assert alert["sent_at"] is not None

    stream = client.get(f"/v1/streams/{stream_id}").json()
    assert stream["status"] == "alert"
    assert stream["monitoring_active"] is False
    assert stream["accident_count"] == 1
    assert client.get("/v1/pending-alerts/stats/pending-count").json() == {
        "pending_count": 0
    }
    fetched = client.get(f"/v1/alerts/{alert['alert_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["stream_id"] == stream_id


def test_decided_pending_alert_returns_409() -> None:
    stream_id = _create_stream()
    pending = _create_pending_alert(stream_id)
    _approve(pending["pending_alert_id"])

    again = client.post(
        f"/v1/pending-alerts/{pending['pending_alert_id']}/approve",
        json={"approved_by": "someone-else"},
    )
    reject = client.post(
        f"/v1/pending-alerts/{pending['pending_alert_id']}/reject",
        json={"rejection_reason": "late"},
    )

    assert again.status_code == 409
    assert reject.status_code == 409
    assert len(client.get("/v1/alerts").json()) == 1


def test_reject_flow_keeps_stream_state() -> None:
    stream_id = _create_stream()
    pending = _create_pending_alert(stream_id)

    response = client.post(
        f"/v1/pending-alerts/{pending['pending_alert_id']}/reject",
        json={"approved_by": "operator", "rejection_reason": "false positive"},
    )

    assert response.status_code == 200
    rejected = response.json()["pending_alert"]
    assert rejected["status"] == "rejected"
    assert rejected["rejection_reason"] == "false positive"
    assert client.get("/v1/alerts").json() == []
    stream = client.get(f"/v1/streams/{stream_id}").json()
    assert stream["status"] == "inactive"
    assert stream["accident_count"] == 0


def test_unknown_pending_alert_returns_404() -> None:
    assert client.get("/v1/pending-alerts/missing").status_code == 404
    assert client.post("/v1/pending-alerts/missing/approve", json={}).status_code == 404
    assert client.post("/v1/pending-alerts/missing/reject", json={}).status_code == 404


def test_pending_alert_filters() -> None:
    first = _create_stream(url="rtsp://cam-1/live")
    second = _create_stream(url="rtsp://cam-2/live")
    decided = _create_pending_alert(first)
    _create_pending_alert(first)
    _create_pending_alert(second)
    _approve(decided["pending_alert_id"])

    by_stream = client.get("/v1/pending-alerts", params={"stream_id": first}).json()
    pending = client.get("/v1/pending-alerts", params={"status": "pending"}).json()
    limited = client.get("/v1/pending-alerts", params={"limit": 1}).json()

    assert len(by_stream) == 2
    assert len(pending) == 2
    assert all(item["status"] == "pending" for item in pending)
    assert len(limited) == 1


def test_acknowledge_resolve_and_summary() -> None:
    stream_id = _create_stream()
    first = _approve(_create_pending_alert(stream_id, severity="critical")["pending_alert_id"])
    second = _approve(_create_pending_alert(stream_id, severity="low")["pending_alert_id"])
    first_id = first["alert"]["alert_id"]
    second_id = second["alert"]["alert_id"]

    ack = client.post(f"/v1/alerts/{first_id}/acknowledge")
    resolved = client.post(f"/v1/alerts/{second_id}/resolve")
    resolve_again = client.post(f"/v1/alerts/{second_id}/resolve")
    ack_resolved = client.post(f"/v1/alerts/{second_id}/acknowledge")

    assert ack.status_code == 200
    assert ack.json()["status"] == "acknowledged"
    assert ack.json()["acknowledged_at"] is not None
    assert resolved.status_code == 200
    assert resolved.json()["resolved_at"] is not None
    assert resolve_again.status_code == 409
    assert ack_resolved.status_code == 409
    assert client.post("/v1/alerts/missing/resolve").status_code == 404

    summary = client.get("/v1/alerts/stats/summary").json()
    assert summary["total"] == 2
    assert summary["acknowledged"] == 1
    assert summary["resolved"] == 1
    assert summary["sent"] == 0
    assert summary["critical"] == 1
    assert summary["low"] == 1
    assert summary["high"] == 0

    critical = client.get("/v1/alerts", params={"severity": "critical"}).json()
    assert [item["alert_id"] for item in critical] == [first_id]


def test_delete_stream_cascades() -> None:
    stream_id = _create_stream()
    other_id = _create_stream(url="rtsp://cam-2/live")
    _approve(_create_pending_alert(stream_id)["pending_alert_id"])
    _create_pending_alert(stream_id)
    _create_pending_alert(other_id)

    assert client.delete(f"/v1/streams/{stream_id}").status_code == 200

    assert client.get("/v1/alerts", params={"stream_id": stream_id}).json() == []
    remaining = client.get("/v1/pending-alerts").json()
    assert [item["stream_id"] for item in remaining] == [other_id]


def test_global_event_feed_reports_stream_changes() -> None:
    with client.websocket_connect("/v1/events") as websocket:
        stream_id = _create_stream()
        event = websocket.receive_json()

    assert event["kind"] == "stream-created"
    assert event["scope"] == "global"
    assert event["stream_id"] == stream_id
    assert event["payload"]["stream"]["url"] == "rtsp://cam-1/live"


def test_stream_event_feed_reports_pending_alerts() -> None:
    stream_id = _create_stream()

    with client.websocket_connect(f"/v1/streams/{stream_id}/events") as websocket:
        pending = _create_pending_alert(stream_id)
        event = websocket.receive_json()

    assert event["kind"] == "pending-alert-created"
    assert event["payload"]["pending_alert"]["pending_alert_id"] == pending[
        "pending_alert_id"
    ]


def test_stream_event_feed_for_unknown_stream_is_refused() -> None:
    with pytest.raises(WebSocketDisconnect) as error:
        with client.websocket_connect("/v1/streams/missing/events"):
            pass

    assert error.value.code == 4404


def test_detector_status_describes_simulation() -> None:
    response = client.get("/v1/detections/status")

    assert response.status_code == 200
    body = response.json()
    assert body["mode"] == "simulation"
    assert body["collision_threshold"] == 0.7
    assert body["proximity_px"] == 100.0
    assert body["running_streams"] == 0


def test_test_detection_runs_one_pass() -> None:
    response = client.post("/v1/detections/test")

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Detection test completed"
    result = body["result"]
    assert 2 <= result["frame_context"]["vehicle_count"] <= 6
    assert len(result["objects"]) == result["frame_context"]["object_count"]
    assert 0.0 <= result["confidence"] <= 1.0
    assert result["accident_detected"] == bool(result["candidates"])
    assert set(result) == {
        "objects",
        "candidates",
        "accident_detected",
        "confidence",
        "timestamp",
        "frame_context",
    }
    assert client.get("/v1/streams").json() == []


def test_update_alert_status() -> None:
    stream_id = _create_stream()
    alert_id = _approve(_create_pending_alert(stream_id)["pending_alert_id"])["alert"][
        "alert_id"
    ]

    acknowledged = client.put(
        f"/v1/alerts/{alert_id}/status", json={"status": "acknowledged"}
    )
    invalid = client.put(f"/v1/alerts/{alert_id}/status", json={"status": "archived"})
    resolved = client.put(f"/v1/alerts/{alert_id}/status", json={"status": "resolved"})
    reopened = client.put(f"/v1/alerts/{alert_id}/status", json={"status": "sent"})
    missing = client.put("/v1/alerts/missing/status", json={"status": "sent"})

    assert acknowledged.status_code == 200
    assert acknowledged.json()["status"] == "acknowledged"
    assert acknowledged.json()["acknowledged_at"] is not None
    assert invalid.status_code == 422
    assert resolved.status_code == 200
    assert resolved.json()["resolved_at"] is not None
    assert reopened.status_code == 409
    assert missing.status_code == 404


def test_send_alert_restamps_sent_time() -> None:
    stream_id = _create_stream()
    alert = _approve(_create_pending_alert(stream_id)["pending_alert_id"])["alert"]
    client.post(f"/v1/alerts/{alert['alert_id']}/acknowledge")

    response = client.post(f"/v1/alerts/{alert['alert_id']}/send")

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Alert sent successfully"
    assert body["alert"]["status"] == "sent"
    assert body["alert"]["sent_at"] >= alert["sent_at"]
    assert client.post("/v1/alerts/missing/send").status_code == 404

    client.post(f"/v1/alerts/{alert['alert_id']}/resolve")
    assert client.post(f"/v1/alerts/{alert['alert_id']}/send").status_code == 409


class _RefusingWebSocket:
    async def accept(self) -> None:
        raise RuntimeError("client went away during handshake")


def test_failed_handshake_releases_subscription() -> None:
    broadcaster = EventBroadcaster()
    subscription = broadcaster.subscribe_global()

    with pytest.raises(RuntimeError):
        anyio.run(_pump_events, _RefusingWebSocket(), subscription)

    assert subscription.closed
    assert broadcaster.subscriber_count() == 0
