from dataclasses import dataclass
from datetime import datetime

VEHICLE_LABELS = ("car", "truck", "bus", "motorcycle")
PEDESTRIAN_LABEL = "person"


@dataclass
class BoundingBox:
    """Axis-aligned box in frame-pixel units."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass
class TrackedObject:
    """Object seen during a single tick."""

    object_id: str
    label: str
    confidence: float
    bbox: BoundingBox

    @property
    def is_vehicle(self) -> bool:
        return self.label in VEHICLE_LABELS


@dataclass
class CollisionCandidate:
    """Pair of vehicles close enough to be scored as a collision."""

    vehicle1: str
    vehicle2: str
    confidence: float
    distance: float
    severity: str
    location: tuple[float, float]
    timestamp: datetime


@dataclass
class FrameContext:
    """Summary of the scene seen on one tick."""

    vehicle_count: int
    pedestrian_count: int
    object_count: int
    average_confidence: float
    traffic_density: str


@dataclass
class DetectionResult:
    """Output of one analysis tick for one stream."""

    objects: list[TrackedObject]
    candidates: list[CollisionCandidate]
    accident_detected: bool
    confidence: float
    timestamp: datetime
    frame_context: FrameContext
