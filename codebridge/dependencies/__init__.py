"""Dependencies package for the Code Bridge service."""

from .services import (
    get_workspace_manager,
    get_sandbox_runner,
    get_metrics_service,
    get_execution_manager,
    get_gateway,
    get_health_service,
    reset_services,
    WorkspaceManagerDep,
    ExecutionManagerDep,
    GatewayDep,
    HealthServiceDep,
    MetricsServiceDep,
)

__all__ = [
    "get_workspace_manager",
    "get_sandbox_runner",
    "get_metrics_service",
    "get_execution_manager",
    "get_gateway",
    "get_health_service",
    "reset_services",
    "WorkspaceManagerDep",
    "ExecutionManagerDep",
    "GatewayDep",
    "HealthServiceDep",
    "MetricsServiceDep",
]
