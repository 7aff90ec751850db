from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from libs.core.application.contracts import (
    AlertRepository,
    Clock,
    EventPublisher,
    PendingAlertRepository,
    ReviewDecision,
    StreamRepository,
    TransactionManager,
    utc_now,
)
from libs.core.domain.detection import DetectionResult
from libs.core.domain.entities import (
    SEVERITY_ORDER,
    Alert,
    DecisionLifecycle,
    DetectionPayload,
    PendingAlert,
    Stream,
)
from libs.core.domain.errors import NotFoundError
from libs.core.domain.events import AccidentPending, AlertApproved, AlertRejected

logger = logging.getLogger(__name__)

DEFAULT_SEVERITY = "high"
UNKNOWN_LOCATION = "Unknown"


@dataclass
class ApprovalResult:
    """Outcome of approving a pending alert."""

    pending_alert: PendingAlert
    alert: Alert


class PendingAlertService:
    """Approval gate between accident detections and final alerts.

    A pending alert moves exactly once, from ``pending`` to ``approved`` or
    ``rejected``. The repository's ``update_status`` is the compare-and-set
    that picks the single winner when decisions race.
    """

    def __init__(
        self,
        stream_repository: StreamRepository,
        pending_alert_repository: PendingAlertRepository,
        alert_repository: AlertRepository,
        transactions: TransactionManager,
        publisher: EventPublisher,
        clock: Clock = utc_now,
    ) -> None:
        self._streams = stream_repository
        self._pending = pending_alert_repository
        self._alerts = alert_repository
        self._transactions = transactions
        self._publisher = publisher
        self._clock = clock

    def create(
        self,
        stream_id: str,
        detection: DetectionPayload,
        confidence: float,
    ) -> PendingAlert:
        pending_alert = PendingAlert(
            pending_alert_id=str(uuid4()),
            stream_id=stream_id,
            detection=detection,
            confidence=confidence,
            frame_timestamp=detection.frame_timestamp,
            created_at=self._clock(),
            lifecycle=DecisionLifecycle(status="pending"),
        )
        self._pending.add(pending_alert)
        logger.info(
            "Accident pending approval at %s (stream=%s, confidence=%.2f)",
            detection.location,
            stream_id,
            confidence,
        )
        self._publisher.publish(AccidentPending(pending_alert=pending_alert))
        return pending_alert

    def get(self, pending_alert_id: str) -> PendingAlert | None:
        return self._pending.get(pending_alert_id)

    def list(
        self,
        stream_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[PendingAlert]:
        return self._pending.list(stream_id=stream_id, status=status, limit=limit)

    def pending_count(self) -> int:
        return len(self._pending.list(status="pending"))

    def approve(self, pending_alert_id: str, approved_by: str) -> ApprovalResult:
        with self._transactions.transaction():
            decided_at = self._clock()
            pending_alert = self._decide(
                pending_alert_id,
                {
                    "status": "approved",
                    "approved_by": approved_by,
                    "approved_at": decided_at,
                    "rejection_reason": None,
                },
            )
            stream = self._streams.get(pending_alert.stream_id)
            alert = _build_alert(
                pending_alert=pending_alert,
                stream=stream,
                decided_at=decided_at,
            )
            self._alerts.add(alert)

            if stream is None:
                logger.warning(
                    "Approved alert %s for missing stream %s",
                    alert.alert_id,
                    pending_alert.stream_id,
                )
            else:
                self._streams.update(
                    stream.stream_id,
                    status="alert",
                    monitoring_active=False,
                    accident_count=stream.accident_count + 1,
                )

        logger.info(
            "Pending alert %s approved by %s -> alert %s",
            pending_alert_id,
            approved_by,
            alert.alert_id,
        )
        self._publisher.publish(AlertApproved(pending_alert=pending_alert, alert=alert))
        return ApprovalResult(pending_alert=pending_alert, alert=alert)

    def reject(
        self,
        pending_alert_id: str,
        approved_by: str,
        reason: str | None = None,
    ) -> PendingAlert:
        pending_alert = self._decide(
            pending_alert_id,
            {
                "status": "rejected",
                "approved_by": approved_by,
                "approved_at": self._clock(),
                "rejection_reason": reason,
            },
        )
        logger.info(
            "Pending alert %s rejected by %s (%s)",
            pending_alert_id,
            approved_by,
            reason or "no reason given",
        )
        self._publisher.publish(AlertRejected(pending_alert=pending_alert))
        return pending_alert

    def _decide(self, pending_alert_id: str, decision: ReviewDecision) -> PendingAlert:
        pending_alert = self._pending.update_status(pending_alert_id, decision)
        if pending_alert is None:
            raise NotFoundError("Pending alert not found")
        return pending_alert


def build_detection_payload(stream: Stream, result: DetectionResult) -> DetectionPayload:
    """Snapshot an accident tick for embedding into a pending alert."""
    severities = [candidate.severity for candidate in result.candidates]
    severity = (
        max(severities, key=SEVERITY_ORDER.index) if severities else DEFAULT_SEVERITY
    )
    return DetectionPayload(
        accidents=list(result.candidates),
        frame_context=result.frame_context,
        bounding_boxes=list(result.objects),
        severity=severity,
        location=stream.location,
        frame_timestamp=result.timestamp,
        coordinates=stream.coordinates,
        accident_count=len(result.candidates),
    )


def _build_alert(
    pending_alert: PendingAlert,
    stream: Stream | None,
    decided_at: datetime,
) -> Alert:
    detection = pending_alert.detection
    location = detection.location or (stream.location if stream else UNKNOWN_LOCATION)
    coordinates = detection.coordinates
    if coordinates is None and stream is not None:
        coordinates = stream.coordinates

    return Alert(
        alert_id=str(uuid4()),
        stream_id=pending_alert.stream_id,
        location=location,
        severity=detection.severity or DEFAULT_SEVERITY,
        type="accident",
        status="sent",
        confidence=pending_alert.confidence,
        detection=detection,
        description=(
            f"Accident detected with {pending_alert.confidence:.2f} confidence"
        ),
        created_at=decided_at,
        coordinates=coordinates,
        pending_alert_id=pending_alert.pending_alert_id,
        sent_at=decided_at,
    )
