import logging
from dataclasses import asdict
from datetime import datetime
from typing import Literal

import anyio
from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from libs.core.application.broadcaster import Subscription
from libs.core.application.contracts import utc_now
from libs.core.domain.detection import (
    BoundingBox,
    CollisionCandidate,
    DetectionResult,
    FrameContext,
    TrackedObject,
)
from libs.core.domain.entities import (
    Alert,
    Coordinates,
    DetectionPayload,
    PendingAlert,
    Stream,
)
from libs.core.domain.errors import AnalysisFailure, InvalidStateError, NotFoundError
from libs.core.domain.events import event_to_dict
from services.api_gateway.dependencies import get_monitoring_service

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_POLL_TIMEOUT_SEC = 0.5


class CoordinatesRequest(BaseModel):
    latitude: float = Field(ge=-90.0, le=90.0)
    longitude: float = Field(ge=-180.0, le=180.0)


class StreamCreateRequest(BaseModel):
    url: str = Field(min_length=1)
    location: str = Field(min_length=1)
    coordinates: CoordinatesRequest | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)


class StreamUpdateRequest(BaseModel):
    url: str | None = Field(default=None, min_length=1)
    location: str | None = Field(default=None, min_length=1)
    coordinates: CoordinatesRequest | None = None
    description: str | None = None
    tags: list[str] | None = None


class CandidateRequest(BaseModel):
    vehicle1: str
    vehicle2: str
    confidence: float = Field(ge=0.0, le=1.0)
    distance: float = Field(ge=0.0)
    severity: str
    location: tuple[float, float]


class TrackedObjectRequest(BaseModel):
    object_id: str
    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    bbox: tuple[float, float, float, float]


class FrameContextRequest(BaseModel):
    vehicle_count: int = Field(default=0, ge=0)
    pedestrian_count: int = Field(default=0, ge=0)
    object_count: int = Field(default=0, ge=0)
    average_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    traffic_density: str = "light"


class DetectionPayloadRequest(BaseModel):
    severity: str = "high"
    location: str = "Unknown"
    frame_timestamp: datetime | None = None
    coordinates: CoordinatesRequest | None = None
    accident_count: int = Field(default=1, ge=0)
    accidents: list[CandidateRequest] = Field(default_factory=list)
    bounding_boxes: list[TrackedObjectRequest] = Field(default_factory=list)
    frame_context: FrameContextRequest = Field(default_factory=FrameContextRequest)


class PendingAlertCreateRequest(BaseModel):
    stream_id: str
    confidence: float = Field(default=0.75, ge=0.0, le=1.0)
    detection: DetectionPayloadRequest


class ApproveRequest(BaseModel):
    approved_by: str = "system"


class RejectRequest(BaseModel):
    approved_by: str = "system"
    rejection_reason: str | None = None


class AlertStatusRequest(BaseModel):
    status: Literal["pending", "sent", "acknowledged", "resolved"]


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
def ready() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/version")
def version() -> dict[str, str]:
    return {"version": "0.1.0"}


@router.post("/v1/streams", status_code=201)
def create_stream(payload: StreamCreateRequest) -> dict[str, object]:
    service = get_monitoring_service()
    stream = service.create_stream(
        url=payload.url,
        location=payload.location,
        coordinates=_to_coordinates(payload.coordinates),
        description=payload.description,
        tags=payload.tags,
    )
    return _stream_to_dict(stream)


@router.get("/v1/streams")
def list_streams(status: str | None = None) -> list[dict[str, object]]:
    service = get_monitoring_service()
    return [_stream_to_dict(stream) for stream in service.list_streams(status=status)]


@router.get("/v1/streams/{stream_id}")
def get_stream(stream_id: str) -> dict[str, object]:
    stream = get_monitoring_service().get_stream(stream_id)
    if stream is None:
        raise HTTPException(status_code=404, detail="Stream not found")
    return _stream_to_dict(stream)


@router.put("/v1/streams/{stream_id}")
def update_stream(stream_id: str, payload: StreamUpdateRequest) -> dict[str, object]:
    changes: dict[str, object] = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in ("coordinates", "description")
    }
    if "coordinates" in changes:
        changes["coordinates"] = _to_coordinates(payload.coordinates)
    try:
        stream = get_monitoring_service().update_stream(stream_id, **changes)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    return _stream_to_dict(stream)


@router.delete("/v1/streams/{stream_id}")
def delete_stream(stream_id: str) -> dict[str, str]:
    try:
        get_monitoring_service().delete_stream(stream_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    return {"message": "Stream deleted successfully"}


@router.post("/v1/streams/{stream_id}/start")
def start_stream(stream_id: str) -> dict[str, object]:
    try:
        stream = get_monitoring_service().start_monitoring(stream_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidStateError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    return {"message": "Stream monitoring started", "stream": _stream_to_dict(stream)}


@router.post("/v1/streams/{stream_id}/stop")
def stop_stream(stream_id: str) -> dict[str, object]:
    try:
        stream = get_monitoring_service().stop_monitoring(stream_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    return {"message": "Stream monitoring stopped", "stream": _stream_to_dict(stream)}


@router.get("/v1/streams/{stream_id}/detections/latest")
def get_latest_detection(stream_id: str) -> dict[str, object] | None:
    try:
        result = get_monitoring_service().latest_detection(stream_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    return _result_to_dict(result) if result is not None else None


@router.get("/v1/detections/status")
def get_detector_status() -> dict[str, object]:
    return get_monitoring_service().detector_status()


@router.post("/v1/detections/test")
def run_test_detection() -> dict[str, object]:
    try:
        result = get_monitoring_service().run_test_detection()
    except AnalysisFailure as error:
        logger.exception("Detector test failed")
        raise HTTPException(status_code=500, detail=str(error)) from error
    return {
        "message": "Detection test completed",
        "result": _result_to_dict(result),
        "timestamp": _iso(utc_now()),
    }


@router.get("/v1/pending-alerts")
def list_pending_alerts(
    status: str | None = None,
    stream_id: str | None = None,
    limit: int = 50,
) -> list[dict[str, object]]:
    service = get_monitoring_service()
    pending_alerts = service.list_pending_alerts(
        stream_id=stream_id,
        status=status,
        limit=limit,
    )
    return [_pending_alert_to_dict(item) for item in pending_alerts]


@router.get("/v1/pending-alerts/stats/pending-count")
def get_pending_count() -> dict[str, int]:
    return {"pending_count": get_monitoring_service().pending_count()}


@router.get("/v1/pending-alerts/{pending_alert_id}")
def get_pending_alert(pending_alert_id: str) -> dict[str, object]:
    pending_alert = get_monitoring_service().get_pending_alert(pending_alert_id)
    if pending_alert is None:
        raise HTTPException(status_code=404, detail="Pending alert not found")
    return _pending_alert_to_dict(pending_alert)


@router.post("/v1/pending-alerts", status_code=201)
def create_pending_alert(payload: PendingAlertCreateRequest) -> dict[str, object]:
    service = get_monitoring_service()
    if service.get_stream(payload.stream_id) is None:
        raise HTTPException(status_code=404, detail="Stream not found")
    pending_alert = service.create_pending_alert(
        stream_id=payload.stream_id,
        detection=_to_detection_payload(payload.detection),
        confidence=payload.confidence,
    )
    return _pending_alert_to_dict(pending_alert)


@router.post("/v1/pending-alerts/{pending_alert_id}/approve")
def approve_pending_alert(
    pending_alert_id: str,
    payload: ApproveRequest,
) -> dict[str, object]:
    try:
        result = get_monitoring_service().approve_pending_alert(
            pending_alert_id=pending_alert_id,
            approved_by=payload.approved_by,
        )
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidStateError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    return {
        "message": "Alert approved and created",
        "pending_alert": _pending_alert_to_dict(result.pending_alert),
        "alert": _alert_to_dict(result.alert),
    }


@router.post("/v1/pending-alerts/{pending_alert_id}/reject")
def reject_pending_alert(
    pending_alert_id: str,
    payload: RejectRequest,
) -> dict[str, object]:
    try:
        pending_alert = get_monitoring_service().reject_pending_alert(
            pending_alert_id=pending_alert_id,
            approved_by=payload.approved_by,
            reason=payload.rejection_reason,
        )
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidStateError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    return {
        "message": "Alert rejected",
        "pending_alert": _pending_alert_to_dict(pending_alert),
    }


@router.get("/v1/alerts")
def get_alerts(
    stream_id: str | None = None,
    status: str | None = None,
    severity: str | None = None,
    limit: int = 50,
) -> list[dict[str, object]]:
    alerts = get_monitoring_service().list_alerts(
        stream_id=stream_id,
        status=status,
        severity=severity,
        limit=limit,
    )
    return [_alert_to_dict(alert) for alert in alerts]


@router.get("/v1/alerts/stats/summary")
def get_alert_summary() -> dict[str, int]:
    return get_monitoring_service().alert_summary()


@router.get("/v1/alerts/{alert_id}")
def get_alert_details(alert_id: str) -> dict[str, object]:
    alert = get_monitoring_service().get_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return _alert_to_dict(alert)


@router.post("/v1/alerts/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: str) -> dict[str, object]:
    try:
        alert = get_monitoring_service().acknowledge_alert(alert_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidStateError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    return _alert_to_dict(alert)


@router.post("/v1/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: str) -> dict[str, object]:
    try:
        alert = get_monitoring_service().resolve_alert(alert_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidStateError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    return _alert_to_dict(alert)


@router.put("/v1/alerts/{alert_id}/status")
def update_alert_status(alert_id: str, payload: AlertStatusRequest) -> dict[str, object]:
    try:
        alert = get_monitoring_service().update_alert_status(alert_id, payload.status)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidStateError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    return _alert_to_dict(alert)


@router.post("/v1/alerts/{alert_id}/send")
def send_alert(alert_id: str) -> dict[str, object]:
    try:
        alert = get_monitoring_service().send_alert(alert_id)
    except NotFoundError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    except InvalidStateError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    return {"message": "Alert sent successfully", "alert": _alert_to_dict(alert)}


@router.websocket("/v1/events")
async def global_events(websocket: WebSocket) -> None:
    subscription = get_monitoring_service().subscribe_global()
    await _pump_events(websocket, subscription)


@router.websocket("/v1/streams/{stream_id}/events")
async def stream_events(websocket: WebSocket, stream_id: str) -> None:
    try:
        subscription = get_monitoring_service().subscribe_to_stream(stream_id)
    except NotFoundError:
        await websocket.close(code=4404)
        return
    await _pump_events(websocket, subscription)


async def _pump_events(websocket: WebSocket, subscription: Subscription) -> None:
    try:
        await websocket.accept()
        async with anyio.create_task_group() as task_group:
            task_group.start_soon(_watch_disconnect, websocket, task_group.cancel_scope)
            task_group.start_soon(
                _forward_events, websocket, subscription, task_group.cancel_scope
            )
    finally:
        subscription.close()


async def _watch_disconnect(websocket: WebSocket, cancel_scope: anyio.CancelScope) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        cancel_scope.cancel()


async def _forward_events(
    websocket: WebSocket,
    subscription: Subscription,
    cancel_scope: anyio.CancelScope,
) -> None:
    try:
        while not subscription.closed:
            event = await run_in_threadpool(subscription.get, EVENT_POLL_TIMEOUT_SEC)
            if event is not None:
                await websocket.send_json(jsonable_encoder(event_to_dict(event)))
    except (WebSocketDisconnect, RuntimeError) as error:
        logger.debug("Event feed closed: %s", error)
    finally:
        cancel_scope.cancel()


def _to_coordinates(payload: CoordinatesRequest | None) -> Coordinates | None:
    if payload is None:
        return None
    return Coordinates(latitude=payload.latitude, longitude=payload.longitude)


def _to_detection_payload(payload: DetectionPayloadRequest) -> DetectionPayload:
    frame_timestamp = payload.frame_timestamp or utc_now()
    return DetectionPayload(
        accidents=[
            CollisionCandidate(
                vehicle1=item.vehicle1,
                vehicle2=item.vehicle2,
                confidence=item.confidence,
                distance=item.distance,
                severity=item.severity,
                location=item.location,
                timestamp=frame_timestamp,
            )
            for item in payload.accidents
        ],
        frame_context=FrameContext(**payload.frame_context.model_dump()),
        bounding_boxes=[
            TrackedObject(
                object_id=item.object_id,
                label=item.label,
                confidence=item.confidence,
                bbox=BoundingBox(*item.bbox),
            )
            for item in payload.bounding_boxes
        ],
        severity=payload.severity,
        location=payload.location,
        frame_timestamp=frame_timestamp,
        coordinates=_to_coordinates(payload.coordinates),
        accident_count=payload.accident_count,
    )


def _coordinates_to_dict(coordinates: Coordinates | None) -> dict[str, float] | None:
    if coordinates is None:
        return None
    return {"latitude": coordinates.latitude, "longitude": coordinates.longitude}


def _stream_to_dict(stream: Stream) -> dict[str, object]:
    return {
        "stream_id": stream.stream_id,
        "url": stream.url,
        "location": stream.location,
        "coordinates": _coordinates_to_dict(stream.coordinates),
        "status": stream.status,
        "monitoring_active": stream.monitoring_active,
        "last_processed": _iso(stream.last_processed),
        "accident_count": stream.accident_count,
        "description": stream.description,
        "tags": list(stream.tags),
        "created_at": _iso(stream.created_at),
    }


def _pending_alert_to_dict(pending_alert: PendingAlert) -> dict[str, object]:
    return {
        "pending_alert_id": pending_alert.pending_alert_id,
        "stream_id": pending_alert.stream_id,
        "confidence": pending_alert.confidence,
        "frame_timestamp": _iso(pending_alert.frame_timestamp),
        "created_at": _iso(pending_alert.created_at),
        "detection": jsonable_encoder(asdict(pending_alert.detection)),
        "status": pending_alert.lifecycle.status,
        "approved_by": pending_alert.lifecycle.approved_by,
        "approved_at": _iso(pending_alert.lifecycle.approved_at),
        "rejection_reason": pending_alert.lifecycle.rejection_reason,
    }


def _alert_to_dict(alert: Alert) -> dict[str, object]:
    return {
        "alert_id": alert.alert_id,
        "stream_id": alert.stream_id,
        "pending_alert_id": alert.pending_alert_id,
        "location": alert.location,
        "coordinates": _coordinates_to_dict(alert.coordinates),
        "severity": alert.severity,
        "type": alert.type,
        "status": alert.status,
        "confidence": alert.confidence,
        "description": alert.description,
        "detection": jsonable_encoder(asdict(alert.detection)),
        "created_at": _iso(alert.created_at),
        "sent_at": _iso(alert.sent_at),
        "acknowledged_at": _iso(alert.acknowledged_at),
        "resolved_at": _iso(alert.resolved_at),
    }


def _result_to_dict(result: DetectionResult) -> dict[str, object]:
    return jsonable_encoder(asdict(result))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
