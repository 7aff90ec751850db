"""In-process fan-out of state-change events to subscribers."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue

from libs.core.domain.events import GLOBAL_SCOPE, Event

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


class Subscription:
    """Bounded mailbox of events for one observer."""

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        stream_id: str | None,
        maxsize: int,
    ) -> None:
        self.stream_id = stream_id
        self.dropped = 0
        self._broadcaster = broadcaster
        self._queue: Queue[Event] = Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def accepts(self, event: Event) -> bool:
        """Global subscriptions take global-scope events only.

        A stream subscription takes every event about its own stream, of
        either scope, and never sees events about other streams (such as
        ``stream-created`` for a new stream). Observers that need both hold
        one global and one stream subscription.
        """
        if self.stream_id is None:
            return event.scope == GLOBAL_SCOPE
        return event.stream_id == self.stream_id

    def offer(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
        except Full:
            self.dropped += 1
            return False
        return True

    def get(self, timeout: float | None = None) -> Event | None:
        if self.closed and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except Empty:
            return None

    def drain(self) -> list[Event]:
        events: list[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except Empty:
                return events

    def close(self) -> None:
        if not self.closed:
            self._closed.set()
            self._broadcaster.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class EventBroadcaster:
    """Deliver events to global and per-stream subscribers.

    Publishing never blocks: an event for a subscriber whose mailbox is full
    is dropped for that subscriber only. Events published from one thread
    reach each subscriber in publication order.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe_global(self) -> Subscription:
        return self._add(stream_id=None)

    def subscribe_to_stream(self, stream_id: str) -> Subscription:
        return self._add(stream_id=stream_id)

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: Event) -> None:
        with self._lock:
            for subscription in self._subscriptions:
                if not subscription.accepts(event):
                    continue
                if not subscription.offer(event):
                    logger.warning(
                        "Dropped %s event for slow subscriber (stream=%s)",
                        event.kind,
                        subscription.stream_id,
                    )

    def close_all(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()

    def _add(self, stream_id: str | None) -> Subscription:
        subscription = Subscription(
            broadcaster=self,
            stream_id=stream_id,
            maxsize=self._queue_size,
        )
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription
