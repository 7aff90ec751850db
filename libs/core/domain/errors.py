class TrafficWatchError(Exception):
    """Base class for errors raised by the monitoring core."""


class NotFoundError(TrafficWatchError, LookupError):
    """Referenced stream, pending alert or alert does not exist."""


class InvalidStateError(TrafficWatchError, ValueError):
    """Operation conflicts with the current lifecycle state of an entity."""


class AlreadyMonitoringError(InvalidStateError):
    """Monitoring was requested for a stream that already has a live loop."""


class AnalysisFailure(TrafficWatchError, RuntimeError):
    """Detection or collision analysis failed during a scheduled tick."""
