"""State-change events fanned out to subscribers.

Every event carries a ``kind`` tag, a ``scope`` and the id of the stream it
concerns. Global-scope events reach every global subscriber; stream-scope
events only reach subscribers that joined that stream's channel.
"""

from dataclasses import asdict, dataclass
from typing import ClassVar, Union

from libs.core.domain.detection import DetectionResult
from libs.core.domain.entities import Alert, PendingAlert, Stream

GLOBAL_SCOPE = "global"
STREAM_SCOPE = "stream"


@dataclass(frozen=True)
class StreamCreated:
    kind: ClassVar[str] = "stream-created"
    scope: ClassVar[str] = GLOBAL_SCOPE

    stream: Stream

    @property
    def stream_id(self) -> str:
        return self.stream.stream_id


@dataclass(frozen=True)
class StreamUpdated:
    kind: ClassVar[str] = "stream-updated"
    scope: ClassVar[str] = GLOBAL_SCOPE

    stream: Stream

    @property
    def stream_id(self) -> str:
        return self.stream.stream_id


@dataclass(frozen=True)
class StreamDeleted:
    kind: ClassVar[str] = "stream-deleted"
    scope: ClassVar[str] = GLOBAL_SCOPE

    stream_id: str


@dataclass(frozen=True)
class StreamStarted:
    kind: ClassVar[str] = "stream-started"
    scope: ClassVar[str] = GLOBAL_SCOPE

    stream: Stream

    @property
    def stream_id(self) -> str:
        return self.stream.stream_id


@dataclass(frozen=True)
class StreamStopped:
    kind: ClassVar[str] = "stream-stopped"
    scope: ClassVar[str] = GLOBAL_SCOPE

    stream: Stream

    @property
    def stream_id(self) -> str:
        return self.stream.stream_id


@dataclass(frozen=True)
class StreamErrored:
    kind: ClassVar[str] = "stream-error"
    scope: ClassVar[str] = GLOBAL_SCOPE

    stream_id: str
    error: str


@dataclass(frozen=True)
class DetectionCompleted:
    kind: ClassVar[str] = "detection-result"
    scope: ClassVar[str] = STREAM_SCOPE

    stream_id: str
    tick: int
    result: DetectionResult


@dataclass(frozen=True)
class AccidentPending:
    kind: ClassVar[str] = "pending-alert-created"
    scope: ClassVar[str] = GLOBAL_SCOPE

    pending_alert: PendingAlert

    @property
    def stream_id(self) -> str:
        return self.pending_alert.stream_id


@dataclass(frozen=True)
class AlertApproved:
    kind: ClassVar[str] = "alert-approved"
    scope: ClassVar[str] = GLOBAL_SCOPE

    pending_alert: PendingAlert
    alert: Alert

    @property
    def stream_id(self) -> str:
        return self.pending_alert.stream_id


@dataclass(frozen=True)
class AlertRejected:
    kind: ClassVar[str] = "alert-rejected"
    scope: ClassVar[str] = GLOBAL_SCOPE

    pending_alert: PendingAlert

    @property
    def stream_id(self) -> str:
        return self.pending_alert.stream_id


@dataclass(frozen=True)
class AlertAcknowledged:
    kind: ClassVar[str] = "alert-acknowledged"
    scope: ClassVar[str] = GLOBAL_SCOPE

    alert: Alert

    @property
    def stream_id(self) -> str:
        return self.alert.stream_id


@dataclass(frozen=True)
class AlertResolved:
    kind: ClassVar[str] = "alert-resolved"
    scope: ClassVar[str] = GLOBAL_SCOPE

    alert: Alert

    @property
    def stream_id(self) -> str:
        return self.alert.stream_id


@dataclass(frozen=True)
class AlertStatusUpdated:
    kind: ClassVar[str] = "alert-status-updated"
    scope: ClassVar[str] = GLOBAL_SCOPE

    alert: Alert

    @property
    def stream_id(self) -> str:
        return self.alert.stream_id


@dataclass(frozen=True)
class AlertSent:
    kind: ClassVar[str] = "alert-sent"
    scope: ClassVar[str] = GLOBAL_SCOPE

    alert: Alert

    @property
    def stream_id(self) -> str:
        return self.alert.stream_id


Event = Union[
    StreamCreated,
    StreamUpdated,
    StreamDeleted,
    StreamStarted,
    StreamStopped,
    StreamErrored,
    DetectionCompleted,
    AccidentPending,
    AlertApproved,
    AlertRejected,
    AlertAcknowledged,
    AlertResolved,
    AlertStatusUpdated,
    AlertSent,
]


def event_to_dict(event: Event) -> dict[str, object]:
    return {
        "kind": event.kind,
        "scope": event.scope,
        "stream_id": event.stream_id,
        "payload": asdict(event),
    }
