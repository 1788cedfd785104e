"""Data models for the Code Bridge service."""

from .execution import (
    CompileRequest,
    CompileResponse,
    ExecutionRequest,
    OutputChunk,
    OutputStream,
    RunState,
    TerminalEvent,
    TerminalStatus,
)
from .events import (
    EventKind,
    INBOUND_EVENTS,
    InboundEvent,
    JoinPayload,
    CodeChangePayload,
    SyncCodePayload,
    ProgramInputPayload,
    ProgramStopPayload,
    parse_inbound_event,
    make_frame,
)
from .errors import (
    ErrorType,
    ErrorDetail,
    ErrorResponse,
    CodeBridgeException,
    ValidationError,
    MissingFieldsError,
    UnsupportedLanguageError,
    ProtocolError,
    ConnectionNotFoundError,
    SessionBusyError,
    LaunchFailedError,
)

__all__ = [
    # Execution models
    "CompileRequest",
    "CompileResponse",
    "ExecutionRequest",
    "OutputChunk",
    "OutputStream",
    "RunState",
    "TerminalEvent",
    "TerminalStatus",
    # Socket events
    "EventKind",
    "INBOUND_EVENTS",
    "InboundEvent",
    "JoinPayload",
    "CodeChangePayload",
    "SyncCodePayload",
    "ProgramInputPayload",
    "ProgramStopPayload",
    "parse_inbound_event",
    "make_frame",
    # Error models
    "ErrorType",
    "ErrorDetail",
    "ErrorResponse",
    "CodeBridgeException",
    "ValidationError",
    "MissingFieldsError",
    "UnsupportedLanguageError",
    "ProtocolError",
    "ConnectionNotFoundError",
    "SessionBusyError",
    "LaunchFailedError",
]
