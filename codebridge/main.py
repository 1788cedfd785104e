"""Main FastAPI application for the Code Bridge service."""

# Standard library imports
from contextlib import asynccontextmanager

# Third-party imports
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Local application imports
from .api import compile, health, socket
from .config import settings
from .dependencies.services import (
    get_gateway,
    get_health_service,
    get_workspace_manager,
)
from .middleware.security import SecurityMiddleware, RequestLoggingMiddleware
from .middleware.metrics import MetricsMiddleware
from .utils.error_handlers import register_exception_handlers
from .utils.logging import setup_logging

# Setup logging
setup_logging()
logger = structlog.get_logger()


def _prepare_workspace_root() -> None:
    """Create the workspace root and sweep runs left by a previous process."""
    workspace_manager = get_workspace_manager()
    removed = workspace_manager.prepare_root()
    if workspace_manager.get_initialization_error():
        logger.error(
            "Workspace root unavailable",
            error=workspace_manager.get_initialization_error(),
        )
    else:
        logger.info(
            "Workspace root ready",
            root=str(workspace_manager.root),
            swept=removed,
        )


async def _perform_health_checks() -> None:
    """Perform initial health checks on all services."""
    health_service = get_health_service()
    try:
        health_results = await health_service.check_all_services(use_cache=False)

        for service_name, result in health_results.items():
            if result.status.value == "healthy":
                logger.debug(
                    f"{service_name} healthy",
                    response_time_ms=result.response_time_ms,
                )
            else:
                logger.warning(
                    f"{service_name} health check failed",
                    status=result.status.value,
                    error=result.error,
                )

        overall_status = health_service.get_overall_status(health_results)
        logger.info("Health checks completed", overall_status=overall_status.value)
    except Exception as e:
        logger.error("Initial health checks failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Code Bridge", version="1.0.0")

    if settings.api_debug:
        logger.warning("Debug mode is enabled - disable in production")
    logger.info("Configuration", **settings.get_configuration_summary())

    _prepare_workspace_root()
    await _perform_health_checks()

    # Build the gateway before requests arrive; getters run in a threadpool
    get_gateway()

    logger.info("Code Bridge startup completed")

    yield

    logger.info("Shutting down Code Bridge")

    try:
        await get_gateway().shutdown()
    except Exception as e:
        logger.error("Error terminating sessions", error=str(e))

    logger.info("Code Bridge shutdown completed")


# Create FastAPI app
app = FastAPI(
    title="Code Bridge",
    description="Collaborative editing relay with sandboxed code execution",
    version="1.0.0",
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    debug=settings.api_debug,
    lifespan=lifespan,
)

# Add middleware (order matters - most specific first)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityMiddleware)

if settings.enable_cors:
    origins = settings.cors_origins if settings.cors_origins else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    logger.info("CORS enabled", origins=origins)

# Register global error handlers
register_exception_handlers(app)

app.include_router(health.router, tags=["health", "monitoring"])
app.include_router(compile.router, tags=["execution"])
app.include_router(socket.router, tags=["socket"])


def run_server():
    logger.info(f"Starting HTTP server on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "codebridge.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
        access_log=settings.enable_access_logs,
        timeout_keep_alive=120,
    )


if __name__ == "__main__":
    run_server()
