"""Exception handlers for the HTTP surface of the Code Bridge service.

Only ``POST /compile`` raises service errors; everything else that can go
wrong over HTTP is a routing error (unknown path, wrong method), a body that
does not parse, or a bug. Rate limiting and content-type checks are answered
by ``SecurityMiddleware`` before any handler runs.
"""

import uuid
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..models.errors import CodeBridgeException, ErrorDetail, ErrorResponse, ErrorType
from .request_helpers import get_client_ip

logger = structlog.get_logger(__name__)

# Errors raised by the router itself
_ROUTING_ERROR_TYPES = {
    404: ErrorType.RESOURCE_NOT_FOUND,
    405: ErrorType.VALIDATION,
}


def generate_request_id() -> str:
    """Generate a unique request ID for error tracking."""
    return uuid.uuid4().hex[:16]


def error_json(
    status_code: int,
    error: str,
    error_type: ErrorType,
    details: Optional[List[ErrorDetail]] = None,
    request_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build the standard error body."""
    body = ErrorResponse(
        error=error,
        error_type=error_type,
        details=details or None,
        request_id=request_id or generate_request_id(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


def _request_context(request: Request) -> Dict[str, Any]:
    return {
        "path": request.url.path,
        "method": request.method,
        "client_ip": get_client_ip(request),
    }


async def code_bridge_exception_handler(
    request: Request, exc: CodeBridgeException
) -> JSONResponse:
    """Rejected run submissions and launch failures."""
    request_id = exc.request_id or generate_request_id()
    context = _request_context(request)

    # Run rejections carry what they were about
    missing = getattr(exc, "fields", None)
    if missing:
        context["missing_fields"] = missing
    language = getattr(exc, "language", None)
    if language:
        context["language"] = language
    connection_id = getattr(exc, "connection_id", None)
    if connection_id:
        context["connection_id"] = connection_id[:12]

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Run request rejected",
        error_type=exc.error_type.value,
        status_code=exc.status_code,
        error=exc.message,
        request_id=request_id,
        **context,
    )

    return error_json(
        exc.status_code,
        exc.message,
        exc.error_type,
        details=exc.details,
        request_id=request_id,
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Routing errors: unknown path or method not allowed."""
    error_type = _ROUTING_ERROR_TYPES.get(exc.status_code, ErrorType.INTERNAL_SERVER)
    logger.info(
        "Routing error",
        status_code=exc.status_code,
        detail=exc.detail,
        **_request_context(request),
    )
    return error_json(
        exc.status_code,
        str(exc.detail),
        error_type,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """A body that is not valid JSON or has mistyped fields; reported as 400."""
    details = []
    for error in exc.errors():
        # ("body", "code") -> "code"; a JSON syntax error has no field
        location = [str(loc) for loc in error.get("loc", ()) if loc != "body"]
        details.append(
            ErrorDetail(
                field=".".join(location) or None,
                message=error.get("msg", "Invalid value"),
                code=error.get("type"),
            )
        )

    logger.warning(
        "Invalid request body",
        errors=[d.model_dump() for d in details],
        **_request_context(request),
    )
    return error_json(400, "Invalid request body", ErrorType.VALIDATION, details=details)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected exceptions; details stay in the log."""
    request_id = generate_request_id()
    logger.error(
        "Unhandled exception",
        request_id=request_id,
        exception_type=type(exc).__name__,
        exc_info=exc,
        **_request_context(request),
    )
    return error_json(
        500, "An unexpected error occurred", ErrorType.INTERNAL_SERVER, request_id=request_id
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install every handler on the application."""
    app.add_exception_handler(CodeBridgeException, code_bridge_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
