"""Background polling loops that run detection for monitored streams."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field

from libs.core.application.contracts import (
    Clock,
    EventPublisher,
    ObjectSource,
    StreamRepository,
    utc_now,
)
from libs.core.application.pending_alerts import (
    PendingAlertService,
    build_detection_payload,
)
from libs.core.detection.collision import CollisionAnalyzer
from libs.core.domain.detection import CollisionCandidate, DetectionResult
from libs.core.domain.entities import Stream
from libs.core.domain.errors import (
    AlreadyMonitoringError,
    AnalysisFailure,
    NotFoundError,
)
from libs.core.domain.events import (
    DetectionCompleted,
    StreamErrored,
    StreamStarted,
    StreamStopped,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 5.0
CANDIDATE_HISTORY = 20


@dataclass
class MonitoringContext:
    """Detection state owned by one scheduler instance."""

    history_size: int = CANDIDATE_HISTORY
    latest_results: dict[str, DetectionResult] = field(default_factory=dict)
    recent_candidates: dict[str, deque[CollisionCandidate]] = field(
        default_factory=dict
    )
    lock: threading.Lock = field(default_factory=threading.Lock)

    def record(self, stream_id: str, result: DetectionResult) -> None:
        with self.lock:
            self.latest_results[stream_id] = result
            history = self.recent_candidates.setdefault(
                stream_id, deque(maxlen=self.history_size)
            )
            history.extend(result.candidates)

    def latest(self, stream_id: str) -> DetectionResult | None:
        with self.lock:
            return self.latest_results.get(stream_id)

    def candidates(self, stream_id: str) -> list[CollisionCandidate]:
        with self.lock:
            return list(self.recent_candidates.get(stream_id, ()))

    def forget(self, stream_id: str) -> None:
        with self.lock:
            self.latest_results.pop(stream_id, None)
            self.recent_candidates.pop(stream_id, None)

    def clear(self) -> None:
        with self.lock:
            self.latest_results.clear()
            self.recent_candidates.clear()


@dataclass
class _Worker:
    stream_id: str
    cancel: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None

    @property
    def alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()


class StreamScheduler:
    """Own one polling thread per monitored stream.

    ``start`` persists the stream as active and spawns a daemon thread that
    ticks every ``interval_sec``. Each tick re-reads the stream and exits as
    soon as monitoring is no longer active, so ``stop`` is cooperative: a
    tick already running completes and publishes its result. A failure only
    marks the stream as errored when it comes from the stream's current,
    uncancelled loop; ticks of a loop replaced by a later ``start`` are
    discarded.
    """

    def __init__(
        self,
        stream_repository: StreamRepository,
        object_source: ObjectSource,
        analyzer: CollisionAnalyzer,
        pending_alerts: PendingAlertService,
        publisher: EventPublisher,
        interval_sec: float = POLL_INTERVAL_SEC,
        clock: Clock = utc_now,
        context: MonitoringContext | None = None,
    ) -> None:
        self._streams = stream_repository
        self._source = object_source
        self._analyzer = analyzer
        self._pending_alerts = pending_alerts
        self._publisher = publisher
        self._interval_sec = interval_sec
        self._clock = clock
        self.context = context or MonitoringContext()
        self._lock = threading.Lock()
        self._workers: dict[str, _Worker] = {}

    def start(self, stream_id: str) -> Stream:
        with self._lock:
            stream = self._streams.get(stream_id)
            if stream is None:
                raise NotFoundError("Stream not found")
            if stream.monitoring_active:
                raise AlreadyMonitoringError("Stream is already being monitored")

            previous = self._workers.pop(stream_id, None)
            if previous is not None:
                previous.cancel.set()

            started = self._streams.update(
                stream_id,
                status="active",
                monitoring_active=True,
                last_processed=self._clock(),
            )
            if started is None:
                raise NotFoundError("Stream not found")

            worker = _Worker(stream_id=stream_id)
            worker.thread = threading.Thread(
                target=self._run,
                args=(worker,),
                name=f"stream-monitor-{stream_id}",
                daemon=True,
            )
            self._workers[stream_id] = worker
            self._publisher.publish(StreamStarted(stream=started))
            worker.thread.start()

        logger.info("Started monitoring %s (%s)", started.location, stream_id)
        return started

    def stop(self, stream_id: str) -> Stream:
        with self._lock:
            stopped = self._streams.update(
                stream_id,
                status="inactive",
                monitoring_active=False,
            )
            if stopped is None:
                raise NotFoundError("Stream not found")
            worker = self._workers.get(stream_id)
            if worker is not None:
                worker.cancel.set()

        logger.info("Stopped monitoring %s (%s)", stopped.location, stream_id)
        self._publisher.publish(StreamStopped(stream=stopped))
        return stopped

    def forget(self, stream_id: str) -> None:
        """Cancel the loop of a stream that no longer exists."""
        with self._lock:
            worker = self._workers.pop(stream_id, None)
        if worker is not None:
            worker.cancel.set()
        self.context.forget(stream_id)

    def is_running(self, stream_id: str) -> bool:
        with self._lock:
            worker = self._workers.get(stream_id)
        return worker is not None and worker.alive and not worker.cancel.is_set()

    def wait(self, stream_id: str, timeout: float | None = None) -> bool:
        """Block until the loop of ``stream_id`` has exited."""
        with self._lock:
            worker = self._workers.get(stream_id)
        if worker is None or worker.thread is None:
            return True
        worker.thread.join(timeout)
        return not worker.thread.is_alive()

    def latest_result(self, stream_id: str) -> DetectionResult | None:
        return self.context.latest(stream_id)

    def recent_candidates(self, stream_id: str) -> list[CollisionCandidate]:
        return self.context.candidates(stream_id)

    def shutdown(self, timeout: float = 1.0) -> None:
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.cancel.set()
        for worker in workers:
            if worker.thread is not None:
                worker.thread.join(timeout)

    def analyze_once(self, stream_url: str, tick: int = 0) -> DetectionResult:
        """Run one generation and analysis pass outside any monitoring loop."""
        try:
            objects = self._source.generate(stream_url, tick)
            return self._analyzer.analyze(objects, timestamp=self._clock())
        except Exception as error:
            raise AnalysisFailure(f"Analysis failed: {error}") from error

    def status(self) -> dict[str, object]:
        with self._lock:
            running = sum(
                1
                for worker in self._workers.values()
                if worker.alive and not worker.cancel.is_set()
            )
        return {"interval_sec": self._interval_sec, "running_streams": running}

    def _run(self, worker: _Worker) -> None:
        tick = 0
        while not worker.cancel.wait(self._interval_sec):
            tick += 1
            try:
                if not self._tick(worker, tick):
                    break
            except AnalysisFailure as error:
                logger.exception("Analysis failed for stream %s", worker.stream_id)
                self._fail(worker, error)
                break
            except Exception as error:
                logger.exception("Monitoring loop for %s crashed", worker.stream_id)
                self._fail(worker, error)
                break
        logger.debug("Monitoring loop for %s exited after %d ticks", worker.stream_id, tick)

    def _tick(self, worker: _Worker, tick: int) -> bool:
        stream_id = worker.stream_id
        stream = self._streams.get(stream_id)
        if stream is None or not stream.monitoring_active:
            return False

        result = self.analyze_once(stream.url, tick)
        if self._superseded(worker):
            logger.debug("Discarding tick %d of replaced loop for %s", tick, stream_id)
            return False

        self._streams.update(stream_id, last_processed=result.timestamp)
        self.context.record(stream_id, result)
        self._publisher.publish(
            DetectionCompleted(stream_id=stream_id, tick=tick, result=result)
        )

        if result.accident_detected:
            logger.warning(
                "Accident detected at %s (stream=%s, candidates=%d)",
                stream.location,
                stream_id,
                len(result.candidates),
            )
            self._pending_alerts.create(
                stream_id=stream_id,
                detection=build_detection_payload(stream, result),
                confidence=result.confidence,
            )
        return True

    def _superseded(self, worker: _Worker) -> bool:
        with self._lock:
            return self._workers.get(worker.stream_id) is not worker

    def _fail(self, worker: _Worker, error: Exception) -> None:
        with self._lock:
            if worker.cancel.is_set() or self._workers.get(worker.stream_id) is not worker:
                logger.info(
                    "Ignoring failure of stopped loop for %s: %s", worker.stream_id, error
                )
                return
            self._streams.update(worker.stream_id, status="error", monitoring_active=False)
        self._publisher.publish(StreamErrored(stream_id=worker.stream_id, error=str(error)))
