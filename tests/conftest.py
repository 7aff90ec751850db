"""Shared fixtures for core service tests."""

from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from libs.core.application.broadcaster import EventBroadcaster
from libs.core.application.pending_alerts import PendingAlertService
from libs.core.domain.detection import (
    BoundingBox,
    CollisionCandidate,
    FrameContext,
    TrackedObject,
)
from libs.core.domain.entities import Coordinates, DetectionPayload, Stream
from services.api_gateway.infrastructure.memory_store import (
    InMemoryAlertRepository,
    InMemoryDatabase,
    InMemoryPendingAlertRepository,
    InMemoryStreamRepository,
)

FIXED_NOW = datetime(2025, 11, 15, 18, 30, tzinfo=timezone.utc)


def vehicle(
    object_id: str,
    center_x: float,
    center_y: float,
    confidence: float = 0.9,
    label: str = "car",
    size: float = 40.0,
) -> TrackedObject:
    return TrackedObject(
        object_id=object_id,
        label=label,
        confidence=confidence,
        bbox=BoundingBox(
            x=center_x - size / 2,
            y=center_y - size / 2,
            width=size,
            height=size,
        ),
    )


def collision_scene() -> list[TrackedObject]:
    """Three vehicles where only the first two are 40px apart."""
    return [
        vehicle("car-1", 100.0, 100.0, confidence=0.95),
        vehicle("truck-1", 140.0, 100.0, confidence=0.93, label="truck"),
        vehicle("bus-1", 600.0, 400.0, confidence=0.9, label="bus"),
    ]


def detection_payload(severity: str = "high") -> DetectionPayload:
    return DetectionPayload(
        accidents=[
            CollisionCandidate(
                vehicle1="car",
                vehicle2="truck",
                confidence=0.848,
                distance=40.0,
                severity=severity,
                location=(120.0, 100.0),
                timestamp=FIXED_NOW,
            )
        ],
        frame_context=FrameContext(
            vehicle_count=3,
            pedestrian_count=0,
            object_count=3,
            average_confidence=0.93,
            traffic_density="moderate",
        ),
        bounding_boxes=collision_scene(),
        severity=severity,
        location="Main Street & 5th Avenue",
        frame_timestamp=FIXED_NOW,
        coordinates=Coordinates(latitude=40.7589, longitude=-73.9851),
        accident_count=1,
    )


@dataclass
class CoreFixture:
    db: InMemoryDatabase
    streams: InMemoryStreamRepository
    pending_alerts: InMemoryPendingAlertRepository
    alerts: InMemoryAlertRepository
    broadcaster: EventBroadcaster
    service: PendingAlertService

    def add_stream(self, url: str = "cam-1", stream_id: str = "stream-1") -> Stream:
        stream = Stream(
            stream_id=stream_id,
            url=url,
            location="Main Street & 5th Avenue",
            status="inactive",
            created_at=FIXED_NOW,
            coordinates=Coordinates(latitude=40.7589, longitude=-73.9851),
        )
        self.streams.add(stream)
        return stream


@pytest.fixture
def core() -> CoreFixture:
    db = InMemoryDatabase()
    streams = InMemoryStreamRepository(db)
    pending_alerts = InMemoryPendingAlertRepository(db)
    alerts = InMemoryAlertRepository(db)
    broadcaster = EventBroadcaster(queue_size=64)
    service = PendingAlertService(
        stream_repository=streams,
        pending_alert_repository=pending_alerts,
        alert_repository=alerts,
        transactions=db,
        publisher=broadcaster,
        clock=lambda: FIXED_NOW,
    )
    return CoreFixture(
        db=db,
        streams=streams,
        pending_alerts=pending_alerts,
        alerts=alerts,
        broadcaster=broadcaster,
        service=service,
    )
