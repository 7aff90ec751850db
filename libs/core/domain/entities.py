from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from libs.core.domain.detection import CollisionCandidate, FrameContext, TrackedObject

StreamStatus = Literal["inactive", "active", "error", "alert"]
DecisionStatus = Literal["pending", "approved", "rejected"]
AlertStatus = Literal["pending", "sent", "acknowledged", "resolved"]
AlertType = Literal["accident", "traffic_jam", "weather", "system"]
Severity = Literal["critical", "high", "medium", "low"]

SEVERITY_ORDER: tuple[str, ...] = ("low", "medium", "high", "critical")


@dataclass
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class Stream:
    """Camera feed entity."""

    stream_id: str
    url: str
    location: str
    status: str
    created_at: datetime
    coordinates: Optional[Coordinates] = None
    monitoring_active: bool = False
    last_processed: Optional[datetime] = None
    accident_count: int = 0
    description: Optional[str] = None
    tags: list[str] = field(default_factory=list)


@dataclass
class DetectionPayload:
    """Detection snapshot embedded into pending and final alerts."""

    accidents: list[CollisionCandidate]
    frame_context: FrameContext
    bounding_boxes: list[TrackedObject]
    severity: str
    location: str
    frame_timestamp: datetime
    coordinates: Optional[Coordinates] = None
    accident_count: int = 0


@dataclass
class DecisionLifecycle:
    """Lifecycle data for pending alert approval state."""

    status: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


@dataclass
class PendingAlert:
    """Accident detection awaiting a human decision."""

    pending_alert_id: str
    stream_id: str
    detection: DetectionPayload
    confidence: float
    frame_timestamp: datetime
    created_at: datetime
    lifecycle: DecisionLifecycle


@dataclass
class Alert:
    """Finalized incident created from an approved pending alert."""

    alert_id: str
    stream_id: str
    location: str
    severity: str
    type: str
    status: str
    confidence: float
    detection: DetectionPayload
    description: str
    created_at: datetime
    coordinates: Optional[Coordinates] = None
    pending_alert_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
