"""In-memory storage for streams, pending alerts and alerts."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace

from libs.core.application.contracts import ReviewDecision
from libs.core.domain.entities import Alert, DecisionLifecycle, PendingAlert, Stream
from libs.core.domain.errors import InvalidStateError


class InMemoryDatabase:
    """Dict-backed record store guarded by one re-entrant lock.

    Repositories keep private copies of every record, so callers never hold
    a reference into the store. ``transaction`` holds the lock for a group of
    writes and restores the previous contents if the group fails.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.streams: dict[str, Stream] = {}
        self.pending_alerts: dict[str, PendingAlert] = {}
        self.alerts: dict[str, Alert] = {}

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.lock:
            snapshot = (
                dict(self.streams),
                dict(self.pending_alerts),
                dict(self.alerts),
            )
            try:
                yield
            except BaseException:
                self.streams, self.pending_alerts, self.alerts = snapshot
                raise

    def clear(self) -> None:
        with self.lock:
            self.streams.clear()
            self.pending_alerts.clear()
            self.alerts.clear()


class InMemoryStreamRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def add(self, stream: Stream) -> None:
        with self._db.lock:
            self._db.streams[stream.stream_id] = copy.deepcopy(stream)

    def get(self, stream_id: str) -> Stream | None:
        with self._db.lock:
            return copy.deepcopy(self._db.streams.get(stream_id))

    def list(self, status: str | None = None) -> list[Stream]:
        with self._db.lock:
            streams = [
                stream
                for stream in self._db.streams.values()
                if status is None or stream.status == status
            ]
            streams.sort(key=lambda item: item.created_at, reverse=True)
            return copy.deepcopy(streams)

    def update(self, stream_id: str, **fields: object) -> Stream | None:
        with self._db.lock:
            stream = self._db.streams.get(stream_id)
            if stream is None:
                return None
            updated = replace(stream, **copy.deepcopy(fields))
            self._db.streams[stream_id] = updated
            return copy.deepcopy(updated)

    def delete(self, stream_id: str) -> bool:
        with self._db.lock:
            return self._db.streams.pop(stream_id, None) is not None


class InMemoryPendingAlertRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def add(self, pending_alert: PendingAlert) -> None:
        with self._db.lock:
            self._db.pending_alerts[pending_alert.pending_alert_id] = copy.deepcopy(
                pending_alert
            )

    def get(self, pending_alert_id: str) -> PendingAlert | None:
        with self._db.lock:
            return copy.deepcopy(self._db.pending_alerts.get(pending_alert_id))

    def list(
        self,
        stream_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[PendingAlert]:
        with self._db.lock:
            pending_alerts = [
                item
                for item in self._db.pending_alerts.values()
                if (stream_id is None or item.stream_id == stream_id)
                and (status is None or item.lifecycle.status == status)
            ]
            pending_alerts.sort(key=lambda item: item.created_at, reverse=True)
            return copy.deepcopy(pending_alerts[:limit])

    def update_status(
        self,
        pending_alert_id: str,
        decision: ReviewDecision,
    ) -> PendingAlert | None:
        with self._db.lock:
            pending_alert = self._db.pending_alerts.get(pending_alert_id)
            if pending_alert is None:
                return None
            if pending_alert.lifecycle.status != "pending":
                raise InvalidStateError("Pending alert already decided")

            updated = replace(
                pending_alert,
                lifecycle=DecisionLifecycle(
                    status=decision["status"],
                    approved_by=decision["approved_by"],
                    approved_at=decision["approved_at"],
                    rejection_reason=decision["rejection_reason"],
                ),
            )
            self._db.pending_alerts[pending_alert_id] = updated
            return copy.deepcopy(updated)

    def delete_by_stream(self, stream_id: str) -> int:
        with self._db.lock:
            doomed = [
                key
                for key, item in self._db.pending_alerts.items()
                if item.stream_id == stream_id
            ]
            for key in doomed:
                del self._db.pending_alerts[key]
            return len(doomed)


class InMemoryAlertRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def add(self, alert: Alert) -> None:
        with self._db.lock:
            self._db.alerts[alert.alert_id] = copy.deepcopy(alert)

    def get(self, alert_id: str) -> Alert | None:
        with self._db.lock:
            return copy.deepcopy(self._db.alerts.get(alert_id))

    def list(
        self,
        stream_id: str | None = None,
        status: str | None = None,
        severity: str | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        with self._db.lock:
            alerts = [
                alert
                for alert in self._db.alerts.values()
                if (stream_id is None or alert.stream_id == stream_id)
                and (status is None or alert.status == status)
                and (severity is None or alert.severity == severity)
            ]
            alerts.sort(key=lambda item: item.created_at, reverse=True)
            return copy.deepcopy(alerts[:limit])

    def update(self, alert_id: str, **fields: object) -> Alert | None:
        with self._db.lock:
            alert = self._db.alerts.get(alert_id)
            if alert is None:
                return None
            updated = replace(alert, **copy.deepcopy(fields))
            self._db.alerts[alert_id] = updated
            return copy.deepcopy(updated)

    def delete_by_stream(self, stream_id: str) -> int:
        with self._db.lock:
            doomed = [
                key for key, alert in self._db.alerts.items() if alert.stream_id == stream_id
            ]
            for key in doomed:
                del self._db.alerts[key]
            return len(doomed)
