"""Execution models: run requests, run state and streamed output."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RunState(str, Enum):
    """Per-connection run state."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"


class TerminalStatus(str, Enum):
    """How a run ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"

    @property
    def run_state(self) -> RunState:
        return RunState(self.value)


class OutputStream(str, Enum):
    """Source of an output chunk."""

    STDOUT = "stdout"
    STDERR = "stderr"
    SYSTEM = "system"  # Notices generated by the service itself


@dataclass(frozen=True)
class ExecutionRequest:
    """A submitted run; immutable once created."""

    code: str
    language: str
    connection_id: str


@dataclass(frozen=True)
class OutputChunk:
    """One piece of program output, numbered in arrival order."""

    seq: int
    stream: OutputStream
    text: str


@dataclass(frozen=True)
class TerminalEvent:
    """The single event marking the end of a run."""

    status: TerminalStatus
    exit_code: Optional[int]
    duration_ms: float
    reason: Optional[str] = None


class CompileRequest(BaseModel):
    """Body of POST /compile.

    Every field is optional at the schema level so that missing fields are
    reported as a 400 by the handler rather than a schema error.
    """

    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = Field(default=None, description="Source code to run")
    language: Optional[str] = Field(
        default=None, description="Language tag (python, cpp, java)"
    )
    connection_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("connectionId", "socketId", "connection_id"),
        description="WebSocket connection that receives the output",
    )


class CompileResponse(BaseModel):
    """Response of POST /compile."""

    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(default="started")
    connection_id: str = Field(..., serialization_alias="connectionId")
    socket_id: str = Field(..., serialization_alias="socketId")
