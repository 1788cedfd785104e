"""Error models and exception classes for the Code Bridge service."""

import time
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration."""

    VALIDATION = "validation"
    PROTOCOL = "protocol"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_CONFLICT = "resource_conflict"
    EXECUTION_FAILED = "execution_failed"
    RATE_LIMITED = "rate_limited"
    INTERNAL_SERVER = "internal_server"


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: Optional[str] = Field(None, description="Field name for validation errors")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    model_config = ConfigDict(use_enum_values=True)

    error: str = Field(..., description="Main error message")
    error_type: ErrorType = Field(..., description="Error category")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    request_id: Optional[str] = Field(
        None, description="Request identifier for tracking"
    )
    timestamp: float = Field(default_factory=time.time, description="Error timestamp")


# Custom Exception Classes


class CodeBridgeException(Exception):
    """Base exception for the Code Bridge service."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: Optional[List[ErrorDetail]] = None,
        request_id: Optional[str] = None,
    ):
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.details = details or []
        self.request_id = request_id
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to error response model."""
        return ErrorResponse(
            error=self.message,
            error_type=self.error_type,
            details=self.details if self.details else None,
            request_id=self.request_id,
        )


class ValidationError(CodeBridgeException):
    """Request validation errors."""

    def __init__(self, message: str = "Validation failed", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.VALIDATION, status_code=400, **kwargs
        )


class MissingFieldsError(ValidationError):
    """A run request lacks code, language or connection id."""

    def __init__(self, fields: List[str], **kwargs):
        self.fields = list(fields)
        super().__init__(
            message="Missing required fields",
            details=[
                ErrorDetail(field=name, message="Field is required", code="missing")
                for name in self.fields
            ],
            **kwargs,
        )


class UnsupportedLanguageError(ValidationError):
    """The requested language is not in the enabled allow-set."""

    def __init__(self, language: str, supported: Optional[List[str]] = None, **kwargs):
        self.language = language
        message = "Unsupported language"
        if supported:
            message = f"Unsupported language: {language!r}. Supported: {', '.join(supported)}"
        super().__init__(message=message, **kwargs)


class ProtocolError(CodeBridgeException):
    """Malformed or unknown socket event."""

    def __init__(self, message: str = "Malformed event", **kwargs):
        super().__init__(
            message=message, error_type=ErrorType.PROTOCOL, status_code=400, **kwargs
        )


class ConnectionNotFoundError(CodeBridgeException):
    """No live connection with the given identifier."""

    def __init__(self, connection_id: str, **kwargs):
        self.connection_id = connection_id
        kwargs.setdefault(
            "details",
            [ErrorDetail(field="connectionId", message="No live connection", code="unknown")],
        )
        super().__init__(
            message="Unknown connection",
            error_type=ErrorType.RESOURCE_NOT_FOUND,
            status_code=404,
            **kwargs,
        )


class SessionBusyError(CodeBridgeException):
    """A run is already active for the connection."""

    def __init__(self, connection_id: str, **kwargs):
        self.connection_id = connection_id
        kwargs.setdefault(
            "details",
            [ErrorDetail(field="connectionId", message="Run in progress", code="busy")],
        )
        super().__init__(
            message="A program is already running for this connection",
            error_type=ErrorType.RESOURCE_CONFLICT,
            status_code=409,
            **kwargs,
        )


class LaunchFailedError(CodeBridgeException):
    """The sandbox process could not be started."""

    def __init__(self, message: str = "Failed to start sandbox", **kwargs):
        super().__init__(
            message=message,
            error_type=ErrorType.EXECUTION_FAILED,
            status_code=500,
            **kwargs,
        )
