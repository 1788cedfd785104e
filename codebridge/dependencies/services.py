"""Service dependency injection for the Code Bridge service."""

# Standard library imports
from functools import lru_cache
from typing import Annotated

# Third-party imports
from fastapi import Depends
import structlog

# Local application imports
from ..services.execution import ExecutionSessionManager
from ..services.gateway import Gateway
from ..services.health import HealthService
from ..services.metrics import MetricsService, metrics_service
from ..services.sandbox.runner import SandboxRunner
from ..services.sandbox.workspace import WorkspaceManager

logger = structlog.get_logger(__name__)


@lru_cache()
def get_workspace_manager() -> WorkspaceManager:
    """Get workspace manager instance."""
    return WorkspaceManager()


@lru_cache()
def get_sandbox_runner() -> SandboxRunner:
    """Get sandbox runner instance for the configured runtime."""
    runner = SandboxRunner(get_workspace_manager())
    logger.info("Sandbox runner initialized", runtime=runner.runtime.name)
    return runner


def get_metrics_service() -> MetricsService:
    """Get the process-wide metrics service."""
    return metrics_service


@lru_cache()
def get_execution_manager() -> ExecutionSessionManager:
    """Get execution session manager instance."""
    return ExecutionSessionManager(
        runner=get_sandbox_runner(),
        workspace_manager=get_workspace_manager(),
        metrics=get_metrics_service(),
    )


@lru_cache()
def get_gateway() -> Gateway:
    """Get the connection gateway, wired to the execution manager."""
    return Gateway(get_execution_manager())


@lru_cache()
def get_health_service() -> HealthService:
    """Get health service instance."""
    return HealthService(get_workspace_manager(), get_sandbox_runner().runtime)


def reset_services() -> None:
    """Drop cached service instances (tests and app restarts)."""
    for getter in (
        get_workspace_manager,
        get_sandbox_runner,
        get_execution_manager,
        get_gateway,
        get_health_service,
    ):
        getter.cache_clear()


# Type aliases for dependency injection
WorkspaceManagerDep = Annotated[WorkspaceManager, Depends(get_workspace_manager)]
ExecutionManagerDep = Annotated[
    ExecutionSessionManager, Depends(get_execution_manager)
]
GatewayDep = Annotated[Gateway, Depends(get_gateway)]
HealthServiceDep = Annotated[HealthService, Depends(get_health_service)]
MetricsServiceDep = Annotated[MetricsService, Depends(get_metrics_service)]
