"""Health check and monitoring endpoints."""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, PlainTextResponse
import structlog

from ..config import settings
from ..dependencies.services import (
    ExecutionManagerDep,
    GatewayDep,
    HealthServiceDep,
    MetricsServiceDep,
)
from ..services.health import HealthStatus

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/", summary="Greeting", response_class=PlainTextResponse)
async def root():
    return "Hello World!"


@router.get("/health", summary="Basic health check")
async def basic_health_check():
    """Liveness only; does not touch the workspace or the sandbox runtime."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "service": "codebridge",
    }


@router.get("/health/detailed", summary="Detailed health check")
async def detailed_health_check(
    health_service: HealthServiceDep,
    use_cache: bool = Query(True, description="Use cached health check results"),
):
    """Workspace storage and sandbox runtime checks; 503 when unhealthy."""
    try:
        service_results = await health_service.check_all_services(use_cache=use_cache)
        overall_status = health_service.get_overall_status(service_results)

        response_data = {
            "status": overall_status.value,
            "services": {
                name: result.to_dict() for name, result in service_results.items()
            },
            "summary": {
                "total_services": len(service_results),
                "healthy_services": sum(
                    1
                    for r in service_results.values()
                    if r.status == HealthStatus.HEALTHY
                ),
                "degraded_services": sum(
                    1
                    for r in service_results.values()
                    if r.status == HealthStatus.DEGRADED
                ),
                "unhealthy_services": sum(
                    1
                    for r in service_results.values()
                    if r.status == HealthStatus.UNHEALTHY
                ),
            },
        }

        if overall_status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=response_data)
        elif overall_status == HealthStatus.DEGRADED:
            return JSONResponse(
                status_code=200,
                content=response_data,
                headers={"X-Health-Status": "degraded"},
            )
        return JSONResponse(status_code=200, content=response_data)

    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": "Health check system failure",
                "details": str(e) if settings.api_debug else "Internal error",
            },
        )


@router.get("/status", summary="Service status")
async def service_status(
    gateway: GatewayDep,
    executions: ExecutionManagerDep,
    metrics: MetricsServiceDep,
):
    """Live connection, room and run counts plus run statistics."""
    return {
        "connections": gateway.connection_count(),
        "rooms": gateway.rooms.room_count(),
        "sessions": executions.session_count(),
        "active_runs": executions.active_count(),
        "uptime_seconds": metrics.get_uptime_seconds(),
        "execution_statistics": metrics.get_execution_statistics(),
        "api_statistics": metrics.get_api_statistics(),
        "configuration": settings.get_configuration_summary(),
    }
