"""Synthetic object generator standing in for a camera detector."""

from __future__ import annotations

import random

from libs.core.domain.detection import (
    PEDESTRIAN_LABEL,
    VEHICLE_LABELS,
    BoundingBox,
    TrackedObject,
)

FRAME_WIDTH = 1280
FRAME_HEIGHT = 720
MIN_VEHICLES = 2
MAX_VEHICLES = 6
VEHICLE_MIN_CONFIDENCE = 0.85
PEDESTRIAN_MIN_CONFIDENCE = 0.75
PEDESTRIAN_PROBABILITY = 0.3

# (min_width, max_width, min_height, max_height) in frame pixels
SIZE_RANGES: dict[str, tuple[float, float, float, float]] = {
    "car": (80.0, 180.0, 60.0, 130.0),
    "truck": (150.0, 280.0, 110.0, 200.0),
    "bus": (180.0, 320.0, 130.0, 220.0),
    "motorcycle": (40.0, 90.0, 40.0, 90.0),
    PEDESTRIAN_LABEL: (30.0, 60.0, 70.0, 140.0),
}


class DetectionGenerator:
    """Produce a random scene of vehicles and pedestrians for one tick.

    With a seed, every ``(stream_url, tick)`` pair maps to its own random
    source, so a scene can be replayed exactly. Without one, the instance
    random source is shared by all calls.
    """

    def __init__(
        self,
        seed: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._seed = seed
        self._rng = rng or random.Random(seed)

    def generate(self, stream_url: str, tick: int) -> list[TrackedObject]:
        rng = self._source_for(stream_url, tick)
        objects: list[TrackedObject] = []

        vehicle_count = rng.randint(MIN_VEHICLES, MAX_VEHICLES)
        for index in range(vehicle_count):
            label = rng.choice(VEHICLE_LABELS)
            objects.append(
                _make_object(
                    rng=rng,
                    object_id=f"{label}-{tick}-{index}",
                    label=label,
                    min_confidence=VEHICLE_MIN_CONFIDENCE,
                )
            )

        if rng.random() < PEDESTRIAN_PROBABILITY:
            objects.append(
                _make_object(
                    rng=rng,
                    object_id=f"{PEDESTRIAN_LABEL}-{tick}-{vehicle_count}",
                    label=PEDESTRIAN_LABEL,
                    min_confidence=PEDESTRIAN_MIN_CONFIDENCE,
                )
            )
        return objects

    def _source_for(self, stream_url: str, tick: int) -> random.Random:
        if self._seed is None:
            return self._rng
        return random.Random(f"{self._seed}:{stream_url}:{tick}")


def _make_object(
    rng: random.Random,
    object_id: str,
    label: str,
    min_confidence: float,
) -> TrackedObject:
    min_width, max_width, min_height, max_height = SIZE_RANGES[label]
    width = rng.uniform(min_width, max_width)
    height = rng.uniform(min_height, max_height)
    return TrackedObject(
        object_id=object_id,
        label=label,
        confidence=min_confidence + rng.random() * (1.0 - min_confidence),
        bbox=BoundingBox(
            x=rng.uniform(0.0, FRAME_WIDTH - width),
            y=rng.uniform(0.0, FRAME_HEIGHT - height),
            width=width,
            height=height,
        ),
    )
