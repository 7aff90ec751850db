from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Callable, Protocol, TypedDict

from libs.core.domain.detection import TrackedObject
from libs.core.domain.entities import Alert, PendingAlert, Stream
from libs.core.domain.events import Event

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReviewDecision(TypedDict):
    """Decision payload passed to the pending alert repository."""

    status: str
    approved_by: str | None
    approved_at: datetime | None
    rejection_reason: str | None


class StreamRepository(Protocol):
    """Stream persistence contract."""

    def add(self, stream: Stream) -> None: ...

    def get(self, stream_id: str) -> Stream | None: ...

    def list(self, status: str | None = None) -> list[Stream]: ...

    def update(self, stream_id: str, **fields: object) -> Stream | None: ...

    def delete(self, stream_id: str) -> bool: ...


class PendingAlertRepository(Protocol):
    """Pending alert persistence contract."""

    def add(self, pending_alert: PendingAlert) -> None: ...

    def get(self, pending_alert_id: str) -> PendingAlert | None: ...

    def list(
        self,
        stream_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[PendingAlert]: ...

    def update_status(
        self,
        pending_alert_id: str,
        decision: ReviewDecision,
    ) -> PendingAlert | None:
        """Move a pending record to a terminal status.

        Returns None when the record does not exist and raises
        InvalidStateError when it is no longer pending.
        """
        ...

    def delete_by_stream(self, stream_id: str) -> int: ...


class AlertRepository(Protocol):
    """Alert persistence contract."""

    def add(self, alert: Alert) -> None: ...

    def get(self, alert_id: str) -> Alert | None: ...

    def list(
        self,
        stream_id: str | None = None,
        status: str | None = None,
        severity: str | None = None,
        limit: int | None = None,
    ) -> list[Alert]: ...

    def update(self, alert_id: str, **fields: object) -> Alert | None: ...

    def delete_by_stream(self, stream_id: str) -> int: ...


class TransactionManager(Protocol):
    """Groups several repository writes into one externally visible change."""

    def transaction(self) -> AbstractContextManager[None]: ...


class EventPublisher(Protocol):
    def publish(self, event: Event) -> None: ...


class ObjectSource(Protocol):
    """Produces the tracked objects seen on one tick of a stream."""

    def generate(self, stream_url: str, tick: int) -> list[TrackedObject]: ...
