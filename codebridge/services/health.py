"""Health checks for the workspace storage and the sandbox runtime."""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from ..config import settings
from .sandbox.runtime import SandboxRuntime
from .sandbox.workspace import WorkspaceManager

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of one service check."""

    service: str
    status: HealthStatus
    response_time_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "service": self.service,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }
        if self.response_time_ms is not None:
            result["response_time_ms"] = self.response_time_ms
        if self.error:
            result["error"] = self.error
        return result


class HealthService:
    """Runs and caches health checks."""

    def __init__(
        self,
        workspace_manager: WorkspaceManager,
        runtime: SandboxRuntime,
        cache_ttl_seconds: float = 10.0,
    ):
        self._workspaces = workspace_manager
        self._runtime = runtime
        self._cache_ttl = cache_ttl_seconds
        self._cache: Dict[str, HealthCheckResult] = {}
        self._cache_time = 0.0

    async def check_workspace(self) -> HealthCheckResult:
        """Workspace root exists, is writable and has free space left."""
        start = time.perf_counter()
        init_error = self._workspaces.get_initialization_error()
        if init_error:
            return HealthCheckResult(
                service="workspace",
                status=HealthStatus.UNHEALTHY,
                error=init_error,
            )

        try:
            disk = await asyncio.to_thread(self._workspaces.disk_status)
        except OSError as e:
            logger.error("Workspace disk check failed", error=str(e))
            return HealthCheckResult(
                service="workspace",
                status=HealthStatus.UNHEALTHY,
                error=str(e),
            )

        details = {
            "root": str(self._workspaces.root),
            "writable": disk.writable,
            "free_mb": disk.free_mb,
            "total_mb": disk.total_mb,
            "used_percent": disk.used_percent,
            "min_free_mb": settings.min_free_disk_mb,
        }
        status = HealthStatus.HEALTHY
        error = None
        if not disk.writable:
            status, error = HealthStatus.UNHEALTHY, "Workspace root is not writable"
        elif disk.free_mb < settings.min_free_disk_mb:
            status, error = HealthStatus.UNHEALTHY, "Temporary storage exhausted"
        elif disk.free_mb < settings.min_free_disk_mb * 2:
            status = HealthStatus.DEGRADED

        return HealthCheckResult(
            service="workspace",
            status=status,
            response_time_ms=round((time.perf_counter() - start) * 1000, 2),
            details=details,
            error=error,
        )

    async def check_sandbox_runtime(self) -> HealthCheckResult:
        """The configured sandbox runtime can be launched."""
        available = self._runtime.is_available()
        details = {
            "runtime": self._runtime.name,
            "binary": self._runtime.binary,
            "mount_path": self._runtime.mount_path,
            "enabled_languages": settings.get_enabled_languages(),
        }
        if not available:
            return HealthCheckResult(
                service="sandbox",
                status=HealthStatus.UNHEALTHY,
                details=details,
                error=f"{self._runtime.binary} not found on PATH",
            )
        # Runs are not isolated
        status = (
            HealthStatus.DEGRADED
            if self._runtime.name == "local" and not settings.api_debug
            else HealthStatus.HEALTHY
        )
        return HealthCheckResult(service="sandbox", status=status, details=details)

    async def check_all_services(self, use_cache: bool = True) -> Dict[str, HealthCheckResult]:
        """Run every check, reusing recent results when allowed."""
        if use_cache and self._cache and time.time() - self._cache_time < self._cache_ttl:
            return dict(self._cache)

        workspace, sandbox = await asyncio.gather(
            self.check_workspace(), self.check_sandbox_runtime()
        )
        results = {"workspace": workspace, "sandbox": sandbox}

        for name, result in results.items():
            if result.status != HealthStatus.HEALTHY:
                logger.warning(
                    "Health check not healthy",
                    service=name,
                    status=result.status.value,
                    error=result.error,
                )

        self._cache = results
        self._cache_time = time.time()
        return dict(results)

    def get_overall_status(self, results: Dict[str, HealthCheckResult]) -> HealthStatus:
        if any(r.status == HealthStatus.UNHEALTHY for r in results.values()):
            return HealthStatus.UNHEALTHY
        if any(r.status == HealthStatus.DEGRADED for r in results.values()):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY
