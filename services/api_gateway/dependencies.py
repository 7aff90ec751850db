import random

from libs.core.application.broadcaster import EventBroadcaster
from libs.core.application.monitoring_service import MonitoringService
from libs.core.application.pending_alerts import PendingAlertService
from libs.core.application.stream_scheduler import MonitoringContext, StreamScheduler
from libs.core.detection.collision import CollisionAnalyzer
from libs.core.detection.generator import DetectionGenerator
from services.api_gateway.config import Settings
from services.api_gateway.infrastructure.memory_store import (
    InMemoryAlertRepository,
    InMemoryDatabase,
    InMemoryPendingAlertRepository,
    InMemoryStreamRepository,
)

settings = Settings.from_env()

db = InMemoryDatabase()
stream_repository = InMemoryStreamRepository(db)
pending_alert_repository = InMemoryPendingAlertRepository(db)
alert_repository = InMemoryAlertRepository(db)
broadcaster = EventBroadcaster(queue_size=settings.subscriber_queue_size)

pending_alert_service = PendingAlertService(
    stream_repository=stream_repository,
    pending_alert_repository=pending_alert_repository,
    alert_repository=alert_repository,
    transactions=db,
    publisher=broadcaster,
)
scheduler = StreamScheduler(
    stream_repository=stream_repository,
    object_source=DetectionGenerator(seed=settings.detection_seed),
    analyzer=CollisionAnalyzer(rng=random.Random(settings.detection_seed)),
    pending_alerts=pending_alert_service,
    publisher=broadcaster,
    interval_sec=settings.poll_interval_sec,
    context=MonitoringContext(history_size=settings.candidate_history),
)
monitoring_service = MonitoringService(
    stream_repository=stream_repository,
    pending_alert_repository=pending_alert_repository,
    alert_repository=alert_repository,
    transactions=db,
    broadcaster=broadcaster,
    pending_alerts=pending_alert_service,
    scheduler=scheduler,
)


def get_monitoring_service() -> MonitoringService:
    return monitoring_service


def reset_state() -> None:
    scheduler.shutdown(timeout=0.1)
    scheduler.context.clear()
    broadcaster.close_all()
    db.clear()
