"""Socket event protocol.

Frames on the WebSocket are JSON objects ``{"event": <name>, "data": <payload>}``.
Event names form a closed enumeration; inbound payloads are validated with
pydantic models before they reach the gateway.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ProtocolError


class EventKind(str, Enum):
    """Every event name used on the socket, in either direction."""

    # Inbound (client -> service)
    JOIN = "join"
    CODE_CHANGE = "code-change"
    SYNC_CODE = "sync-code"
    PROGRAM_INPUT = "program-input"
    PROGRAM_STOP = "program-stop"

    # Outbound only
    CONNECTED = "connected"
    JOINED = "joined"
    REQUEST_CODE_SYNC = "request-code-sync"
    DISCONNECTED = "disconnected"
    PROGRAM_OUTPUT = "program-output"
    PROGRAM_EXIT = "program-exit"
    ERROR = "error"


INBOUND_EVENTS: FrozenSet[EventKind] = frozenset(
    {
        EventKind.JOIN,
        EventKind.CODE_CHANGE,
        EventKind.SYNC_CODE,
        EventKind.PROGRAM_INPUT,
        EventKind.PROGRAM_STOP,
    }
)


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class JoinPayload(_Payload):
    room_id: str = Field(..., alias="roomId", min_length=1, max_length=256)
    username: str = Field(..., min_length=1, max_length=128)


class CodeChangePayload(_Payload):
    room_id: str = Field(..., alias="roomId", min_length=1, max_length=256)
    code: str


class SyncCodePayload(_Payload):
    code: str
    socket_id: str = Field(..., alias="socketId", min_length=1)


class ProgramInputPayload(_Payload):
    input: str


class ProgramStopPayload(_Payload):
    pass


_PAYLOAD_MODELS: Dict[EventKind, Type[_Payload]] = {
    EventKind.JOIN: JoinPayload,
    EventKind.CODE_CHANGE: CodeChangePayload,
    EventKind.SYNC_CODE: SyncCodePayload,
    EventKind.PROGRAM_INPUT: ProgramInputPayload,
    EventKind.PROGRAM_STOP: ProgramStopPayload,
}


@dataclass(frozen=True)
class InboundEvent:
    """A validated client event."""

    kind: EventKind
    payload: _Payload


def parse_inbound_event(raw: Any) -> InboundEvent:
    """Validate a decoded JSON frame and return the typed event.

    Raises:
        ProtocolError: unknown event name, non-inbound event, or bad payload
    """
    if not isinstance(raw, dict):
        raise ProtocolError("Event frame must be a JSON object")

    name = raw.get("event")
    try:
        kind = EventKind(name)
    except ValueError:
        raise ProtocolError(f"Unknown event: {name!r}")

    if kind not in INBOUND_EVENTS:
        raise ProtocolError(f"Event {kind.value!r} cannot be sent by clients")

    data = raw.get("data")
    if data is None:
        data = {}
    # program-input historically carries the bare input string
    if kind is EventKind.PROGRAM_INPUT and isinstance(data, str):
        data = {"input": data}
    if not isinstance(data, dict):
        raise ProtocolError(f"Payload of {kind.value!r} must be an object")

    try:
        payload = _PAYLOAD_MODELS[kind].model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(
            ".".join(str(loc) for loc in error["loc"]) for error in e.errors()
        )
        raise ProtocolError(f"Invalid {kind.value!r} payload: {fields}")

    return InboundEvent(kind=kind, payload=payload)


def make_frame(kind: EventKind, data: Dict[str, Any]) -> Dict[str, Any]:
    """Build an outbound frame."""
    return {"event": kind.value, "data": data}
