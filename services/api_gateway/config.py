"""Gateway settings read from ``TRAFFICWATCH_*`` environment variables."""

import os
from dataclasses import dataclass

from libs.core.application.broadcaster import DEFAULT_QUEUE_SIZE
from libs.core.application.stream_scheduler import CANDIDATE_HISTORY, POLL_INTERVAL_SEC

ENV_PREFIX = "TRAFFICWATCH_"


@dataclass(frozen=True)
class Settings:
    poll_interval_sec: float = POLL_INTERVAL_SEC
    detection_seed: int | None = None
    subscriber_queue_size: int = DEFAULT_QUEUE_SIZE
    candidate_history: int = CANDIDATE_HISTORY
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        seed = _env("DETECTION_SEED")
        return cls(
            poll_interval_sec=float(_env("POLL_INTERVAL_SEC") or POLL_INTERVAL_SEC),
            detection_seed=int(seed) if seed else None,
            subscriber_queue_size=int(
                _env("SUBSCRIBER_QUEUE_SIZE") or DEFAULT_QUEUE_SIZE
            ),
            candidate_history=int(_env("CANDIDATE_HISTORY") or CANDIDATE_HISTORY),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )


def _env(name: str) -> str | None:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return None
    return value.strip()
