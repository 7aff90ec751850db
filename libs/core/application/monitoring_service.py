from __future__ import annotations

import logging
from uuid import uuid4

from libs.core.application.broadcaster import EventBroadcaster, Subscription
from libs.core.application.contracts import (
    AlertRepository,
    Clock,
    PendingAlertRepository,
    StreamRepository,
    TransactionManager,
    utc_now,
)
from libs.core.application.pending_alerts import ApprovalResult, PendingAlertService
from libs.core.application.stream_scheduler import StreamScheduler
from libs.core.detection.collision import COLLISION_THRESHOLD, PROXIMITY_PX
from libs.core.domain.detection import DetectionResult
from libs.core.domain.entities import (
    SEVERITY_ORDER,
    Alert,
    Coordinates,
    DetectionPayload,
    PendingAlert,
    Stream,
)
from libs.core.domain.errors import InvalidStateError, NotFoundError
from libs.core.domain.events import (
    AlertAcknowledged,
    AlertResolved,
    AlertSent,
    AlertStatusUpdated,
    StreamCreated,
    StreamDeleted,
    StreamUpdated,
)

logger = logging.getLogger(__name__)

ALERT_STATUSES = ("pending", "sent", "acknowledged", "resolved")
STATUS_TIMESTAMPS = {
    "sent": "sent_at",
    "acknowledged": "acknowledged_at",
    "resolved": "resolved_at",
}
DETECTOR_VERSION = "0.1.0"
EDITABLE_STREAM_FIELDS = frozenset(
    {"url", "location", "coordinates", "description", "tags"}
)


class MonitoringService:
    """Application service for the traffic monitoring API."""

    def __init__(
        self,
        stream_repository: StreamRepository,
        pending_alert_repository: PendingAlertRepository,
        alert_repository: AlertRepository,
        transactions: TransactionManager,
        broadcaster: EventBroadcaster,
        pending_alerts: PendingAlertService,
        scheduler: StreamScheduler,
        clock: Clock = utc_now,
    ) -> None:
        self._streams = stream_repository
        self._pending = pending_alert_repository
        self._alerts = alert_repository
        self._transactions = transactions
        self._broadcaster = broadcaster
        self._pending_alerts = pending_alerts
        self._scheduler = scheduler
        self._clock = clock

    def create_stream(
        self,
        url: str,
        location: str,
        coordinates: Coordinates | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> Stream:
        stream = Stream(
            stream_id=str(uuid4()),
            url=url.strip(),
            location=location.strip(),
            status="inactive",
            created_at=self._clock(),
            coordinates=coordinates,
            description=description,
            tags=list(tags or []),
        )
        self._streams.add(stream)
        self._broadcaster.publish(StreamCreated(stream=stream))
        return stream

    def get_stream(self, stream_id: str) -> Stream | None:
        return self._streams.get(stream_id)

    def list_streams(self, status: str | None = None) -> list[Stream]:
        return self._streams.list(status=status)

    def update_stream(self, stream_id: str, **changes: object) -> Stream:
        unknown = set(changes) - EDITABLE_STREAM_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        for name in ("url", "location"):
            value = changes.get(name)
            if isinstance(value, str):
                changes[name] = value.strip()

        stream = self._streams.update(stream_id, **changes)
        if stream is None:
            raise NotFoundError("Stream not found")
        self._broadcaster.publish(StreamUpdated(stream=stream))
        return stream

    def delete_stream(self, stream_id: str) -> None:
        with self._transactions.transaction():
            if not self._streams.delete(stream_id):
                raise NotFoundError("Stream not found")
            pending_removed = self._pending.delete_by_stream(stream_id)
            alerts_removed = self._alerts.delete_by_stream(stream_id)

        self._scheduler.forget(stream_id)
        logger.info(
            "Deleted stream %s with %d pending alerts and %d alerts",
            stream_id,
            pending_removed,
            alerts_removed,
        )
        self._broadcaster.publish(StreamDeleted(stream_id=stream_id))

    def start_monitoring(self, stream_id: str) -> Stream:
        return self._scheduler.start(stream_id)

    def stop_monitoring(self, stream_id: str) -> Stream:
        return self._scheduler.stop(stream_id)

    def latest_detection(self, stream_id: str) -> DetectionResult | None:
        if self._streams.get(stream_id) is None:
            raise NotFoundError("Stream not found")
        return self._scheduler.latest_result(stream_id)

    def run_test_detection(self, stream_url: str = "detector-test") -> DetectionResult:
        """Run the detector once without touching any stream."""
        return self._scheduler.analyze_once(stream_url)

    def detector_status(self) -> dict[str, object]:
        return {
            "detector": "collision-analyzer",
            "mode": "simulation",
            "version": DETECTOR_VERSION,
            "collision_threshold": COLLISION_THRESHOLD,
            "proximity_px": PROXIMITY_PX,
            **self._scheduler.status(),
        }

    def create_pending_alert(
        self,
        stream_id: str,
        detection: DetectionPayload,
        confidence: float,
    ) -> PendingAlert:
        return self._pending_alerts.create(
            stream_id=stream_id,
            detection=detection,
            confidence=confidence,
        )

    def approve_pending_alert(
        self,
        pending_alert_id: str,
        approved_by: str,
    ) -> ApprovalResult:
        return self._pending_alerts.approve(pending_alert_id, approved_by)

    def reject_pending_alert(
        self,
        pending_alert_id: str,
        approved_by: str,
        reason: str | None = None,
    ) -> PendingAlert:
        return self._pending_alerts.reject(pending_alert_id, approved_by, reason)

    def get_pending_alert(self, pending_alert_id: str) -> PendingAlert | None:
        return self._pending_alerts.get(pending_alert_id)

    def list_pending_alerts(
        self,
        stream_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[PendingAlert]:
        return self._pending_alerts.list(stream_id=stream_id, status=status, limit=limit)

    def pending_count(self) -> int:
        return self._pending_alerts.pending_count()

    def list_alerts(
        self,
        stream_id: str | None = None,
        status: str | None = None,
        severity: str | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        return self._alerts.list(
            stream_id=stream_id,
            status=status,
            severity=severity,
            limit=limit,
        )

    def get_alert(self, alert_id: str) -> Alert | None:
        return self._alerts.get(alert_id)

    def acknowledge_alert(self, alert_id: str) -> Alert:
        with self._transactions.transaction():
            alert = self._require_alert(alert_id)
            if alert.status == "resolved":
                raise InvalidStateError("Alert already resolved")
            updated = self._alerts.update(
                alert_id,
                status="acknowledged",
                acknowledged_at=self._clock(),
            )
        self._broadcaster.publish(AlertAcknowledged(alert=updated))
        return updated

    def resolve_alert(self, alert_id: str) -> Alert:
        with self._transactions.transaction():
            alert = self._require_alert(alert_id)
            if alert.status == "resolved":
                raise InvalidStateError("Alert already resolved")
            updated = self._alerts.update(
                alert_id,
                status="resolved",
                resolved_at=self._clock(),
            )
        self._broadcaster.publish(AlertResolved(alert=updated))
        return updated

    def update_alert_status(self, alert_id: str, status: str) -> Alert:
        if status not in ALERT_STATUSES:
            raise ValueError(f"Unknown alert status: {status}")
        with self._transactions.transaction():
            alert = self._require_alert(alert_id)
            if alert.status == "resolved" and status != "resolved":
                raise InvalidStateError("Alert already resolved")
            changes: dict[str, object] = {"status": status}
            if status in STATUS_TIMESTAMPS:
                changes[STATUS_TIMESTAMPS[status]] = self._clock()
            updated = self._alerts.update(alert_id, **changes)
        logger.info("Alert %s moved to %s", alert_id, status)
        self._broadcaster.publish(AlertStatusUpdated(alert=updated))
        return updated

    def send_alert(self, alert_id: str) -> Alert:
        with self._transactions.transaction():
            alert = self._require_alert(alert_id)
            if alert.status == "resolved":
                raise InvalidStateError("Alert already resolved")
            updated = self._alerts.update(alert_id, status="sent", sent_at=self._clock())
        logger.info("Alert %s sent for %s", alert_id, updated.location)
        self._broadcaster.publish(AlertSent(alert=updated))
        return updated

    def alert_summary(self) -> dict[str, int]:
        alerts = self._alerts.list()
        summary = {"total": len(alerts)}
        summary.update({status: 0 for status in ALERT_STATUSES})
        summary.update({severity: 0 for severity in SEVERITY_ORDER})
        for alert in alerts:
            summary[alert.status] = summary.get(alert.status, 0) + 1
            summary[alert.severity] = summary.get(alert.severity, 0) + 1
        return summary

    def subscribe_global(self) -> Subscription:
        return self._broadcaster.subscribe_global()

    def subscribe_to_stream(self, stream_id: str) -> Subscription:
        if self._streams.get(stream_id) is None:
            raise NotFoundError("Stream not found")
        return self._broadcaster.subscribe_to_stream(stream_id)

    def _require_alert(self, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert not found")
        return alert
