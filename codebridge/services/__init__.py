"""Services for the Code Bridge service."""

from .execution import ExecutionSession, ExecutionSessionManager
from .gateway import Connection, Gateway
from .health import HealthCheckResult, HealthService, HealthStatus
from .metrics import MetricsService, metrics_service
from .rooms import Room, RoomBroadcaster

__all__ = [
    "ExecutionSession",
    "ExecutionSessionManager",
    "Connection",
    "Gateway",
    "HealthCheckResult",
    "HealthService",
    "HealthStatus",
    "MetricsService",
    "metrics_service",
    "Room",
    "RoomBroadcaster",
]
