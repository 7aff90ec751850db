"""Pairwise collision scoring over the vehicles seen on one tick."""

from __future__ import annotations

import math
import random
from datetime import datetime
from typing import Callable

from libs.core.domain.detection import (
    PEDESTRIAN_LABEL,
    CollisionCandidate,
    DetectionResult,
    FrameContext,
    TrackedObject,
)

PROXIMITY_PX = 100.0
DISTANCE_FALLOFF_PX = 200.0
CONFIDENCE_GAIN = 1.2
MAX_VARIANCE = 0.3
COLLISION_THRESHOLD = 0.7
MULTI_CANDIDATE_BONUS = 0.1

CRITICAL_THRESHOLD = 0.85
HIGH_THRESHOLD = 0.75
MEDIUM_THRESHOLD = 0.65

HEAVY_TRAFFIC_VEHICLES = 4
MODERATE_TRAFFIC_VEHICLES = 2


def classify_severity(confidence: float) -> str:
    if confidence > CRITICAL_THRESHOLD:
        return "critical"
    if confidence > HIGH_THRESHOLD:
        return "high"
    if confidence > MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def collision_confidence(
    first_confidence: float,
    second_confidence: float,
    distance: float,
    variance: float,
) -> float:
    proximity = max(0.0, 1.0 - distance / DISTANCE_FALLOFF_PX)
    score = first_confidence * second_confidence * proximity * CONFIDENCE_GAIN
    return max(0.0, min(1.0, score + variance))


def traffic_density(vehicle_count: int) -> str:
    if vehicle_count > HEAVY_TRAFFIC_VEHICLES:
        return "heavy"
    if vehicle_count > MODERATE_TRAFFIC_VEHICLES:
        return "moderate"
    return "light"


class CollisionAnalyzer:
    """Score every vehicle pair and decide whether a tick shows an accident.

    ``variance`` supplies the unmodeled noise term added to each proximate
    pair; it defaults to a uniform draw in ``[0, MAX_VARIANCE)``.
    """

    def __init__(
        self,
        variance: Callable[[], float] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._variance = variance or self._draw_variance

    def analyze(
        self,
        objects: list[TrackedObject],
        timestamp: datetime,
    ) -> DetectionResult:
        vehicles = [item for item in objects if item.is_vehicle]
        candidates = self._find_candidates(vehicles=vehicles, timestamp=timestamp)

        return DetectionResult(
            objects=list(objects),
            candidates=candidates,
            accident_detected=bool(candidates),
            confidence=_aggregate_confidence(candidates),
            timestamp=timestamp,
            frame_context=_build_frame_context(objects=objects, vehicles=vehicles),
        )

    def _find_candidates(
        self,
        vehicles: list[TrackedObject],
        timestamp: datetime,
    ) -> list[CollisionCandidate]:
        if len(vehicles) < 2:
            return []

        candidates: list[CollisionCandidate] = []
        for i, first in enumerate(vehicles):
            for second in vehicles[i + 1 :]:
                first_x, first_y = first.bbox.center
                second_x, second_y = second.bbox.center
                distance = math.hypot(first_x - second_x, first_y - second_y)
                if distance >= PROXIMITY_PX:
                    continue

                confidence = collision_confidence(
                    first_confidence=first.confidence,
                    second_confidence=second.confidence,
                    distance=distance,
                    variance=self._variance(),
                )
                if confidence <= COLLISION_THRESHOLD:
                    continue

                candidates.append(
                    CollisionCandidate(
                        vehicle1=first.label,
                        vehicle2=second.label,
                        confidence=confidence,
                        distance=distance,
                        severity=classify_severity(confidence),
                        location=((first_x + second_x) / 2, (first_y + second_y) / 2),
                        timestamp=timestamp,
                    )
                )
        return candidates

    def _draw_variance(self) -> float:
        return self._rng.random() * MAX_VARIANCE


def _aggregate_confidence(candidates: list[CollisionCandidate]) -> float:
    if not candidates:
        return 0.0
    mean = sum(item.confidence for item in candidates) / len(candidates)
    bonus = MULTI_CANDIDATE_BONUS if len(candidates) > 1 else 0.0
    return min(1.0, mean + bonus)


def _build_frame_context(
    objects: list[TrackedObject],
    vehicles: list[TrackedObject],
) -> FrameContext:
    pedestrians = [item for item in objects if item.label == PEDESTRIAN_LABEL]
    average = (
        sum(item.confidence for item in objects) / len(objects) if objects else 0.0
    )
    return FrameContext(
        vehicle_count=len(vehicles),
        pedestrian_count=len(pedestrians),
        object_count=len(objects),
        average_confidence=average,
        traffic_density=traffic_density(len(vehicles)),
    )
