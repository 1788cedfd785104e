"""Connection registry and socket event dispatch.

The gateway owns every live connection. Inbound events are routed through a
closed handler table; run output and terminal events are pushed to the one
connection that owns the run. Each connection has its own outbound queue
drained by the transport's sender task.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ..config import settings
from ..models.errors import (
    CodeBridgeException,
    ErrorType,
    ValidationError,
)
from ..models.events import (
    INBOUND_EVENTS,
    CodeChangePayload,
    EventKind,
    InboundEvent,
    JoinPayload,
    ProgramInputPayload,
    SyncCodePayload,
    make_frame,
)
from ..models.execution import ExecutionRequest, OutputChunk, TerminalEvent
from .execution import ExecutionSession, ExecutionSessionManager
from .rooms import RoomBroadcaster

logger = structlog.get_logger(__name__)

EXECUTION_COMPLETE_BANNER = "\n***********Execution Complete***********\n"


@dataclass
class Connection:
    """One live socket connection."""

    connection_id: str
    username: str = ""
    room_id: str = ""
    queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = field(
        default_factory=asyncio.Queue
    )
    closed: bool = False
    connected_at: float = field(default_factory=time.time)

    def send(self, kind: EventKind, data: Dict[str, Any]) -> bool:
        """Queue an outbound frame; dropped once the connection is closed."""
        if self.closed:
            return False
        self.queue.put_nowait(make_frame(kind, data))
        return True

    def close(self) -> None:
        """Close the outbound queue; the sender task stops at the sentinel."""
        if self.closed:
            return
        self.closed = True
        self.queue.put_nowait(None)


Handler = Callable[[Connection, Any], Awaitable[None]]


class Gateway:
    """Routes socket events to the room broadcaster and the session manager."""

    def __init__(
        self,
        executions: ExecutionSessionManager,
        rooms: Optional[RoomBroadcaster] = None,
        tag_output_streams: Optional[bool] = None,
    ):
        self._executions = executions
        self._rooms = rooms or RoomBroadcaster(self.send)
        self._connections: Dict[str, Connection] = {}
        self._tag_streams = (
            settings.tag_output_streams
            if tag_output_streams is None
            else tag_output_streams
        )

        self._handlers: Dict[EventKind, Handler] = {
            EventKind.JOIN: self._handle_join,
            EventKind.CODE_CHANGE: self._handle_code_change,
            EventKind.SYNC_CODE: self._handle_sync_code,
            EventKind.PROGRAM_INPUT: self._handle_program_input,
            EventKind.PROGRAM_STOP: self._handle_program_stop,
        }
        unhandled = INBOUND_EVENTS - set(self._handlers)
        if unhandled:
            raise RuntimeError(
                f"No handler for events: {sorted(kind.value for kind in unhandled)}"
            )

        executions.on_output(self._on_output)
        executions.on_terminal(self._on_terminal)

    @property
    def rooms(self) -> RoomBroadcaster:
        return self._rooms

    @property
    def executions(self) -> ExecutionSessionManager:
        return self._executions

    def connection_count(self) -> int:
        return len(self._connections)

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def send(self, connection_id: str, kind: EventKind, data: Dict[str, Any]) -> bool:
        """Queue an event for one connection.

        Returns:
            False if the connection is gone
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        return connection.send(kind, data)

    def connect(self) -> Connection:
        """Register a new connection and its execution session."""
        connection = Connection(connection_id=uuid.uuid4().hex)
        self._connections[connection.connection_id] = connection
        self._executions.register(connection.connection_id)
        connection.send(EventKind.CONNECTED, {"socketId": connection.connection_id})

        logger.info(
            "Client connected",
            connection_id=connection.connection_id[:12],
            connections=len(self._connections),
        )
        return connection

    async def dispatch(self, connection: Connection, event: InboundEvent) -> None:
        """Run the handler for an inbound event.

        Failures are reported to the sending connection only.
        """
        handler = self._handlers[event.kind]
        try:
            await handler(connection, event.payload)
        except CodeBridgeException as e:
            logger.info(
                "Event rejected",
                connection_id=connection.connection_id[:12],
                event_name=event.kind.value,
                error=e.message,
            )
            self.send_error(connection, e)
        except Exception as e:
            logger.error(
                "Event handler failed",
                connection_id=connection.connection_id[:12],
                event_name=event.kind.value,
                error=str(e),
                exc_info=True,
            )
            connection.send(
                EventKind.ERROR,
                {
                    "error": "Internal error",
                    "errorType": ErrorType.INTERNAL_SERVER.value,
                },
            )

    def send_error(self, connection: Connection, error: CodeBridgeException) -> None:
        """Report an error to one connection as an ``error`` event."""
        connection.send(
            EventKind.ERROR,
            {"error": error.message, "errorType": error.error_type.value},
        )

    async def submit_run(
        self, connection_id: str, code: Optional[str], language: Optional[str]
    ) -> ExecutionSession:
        """Start a run whose output goes to the given connection."""
        request = ExecutionRequest(
            code=code or "", language=language or "", connection_id=connection_id or ""
        )
        return await self._executions.submit_run(connection_id or "", request)

    async def disconnect(self, connection_id: str) -> None:
        """Tear a connection down.

        Order: close the outbound queue, notify room members, then kill any
        run and wipe the workspace.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        connection.close()

        await self._rooms.leave(connection_id)
        await self._executions.terminate(connection_id)

        logger.info(
            "Client disconnected",
            connection_id=connection_id[:12],
            connections=len(self._connections),
        )

    async def shutdown(self) -> None:
        """Disconnect every connection."""
        connection_ids = list(self._connections.keys())
        await asyncio.gather(
            *(self.disconnect(cid) for cid in connection_ids), return_exceptions=True
        )
        # Sessions registered without a connection
        await self._executions.shutdown()

    async def _handle_join(self, connection: Connection, payload: JoinPayload) -> None:
        if connection.room_id and connection.room_id != payload.room_id:
            raise ValidationError(
                f"Already joined room {connection.room_id!r}; reconnect to switch rooms"
            )
        connection.room_id = payload.room_id
        connection.username = payload.username
        await self._rooms.join(connection.connection_id, payload.room_id, payload.username)

    async def _handle_code_change(
        self, connection: Connection, payload: CodeChangePayload
    ) -> None:
        await self._rooms.broadcast_code_change(
            connection.connection_id, payload.room_id, payload.code
        )

    async def _handle_sync_code(
        self, connection: Connection, payload: SyncCodePayload
    ) -> None:
        await self._rooms.relay_sync(connection.room_id, payload.socket_id, payload.code)

    async def _handle_program_input(
        self, connection: Connection, payload: ProgramInputPayload
    ) -> None:
        data = (payload.input + "\n").encode("utf-8")
        if await self._executions.forward_input(connection.connection_id, data):
            # Echo the newline so the terminal moves past the typed input
            connection.send(EventKind.PROGRAM_OUTPUT, {"output": "\n"})

    async def _handle_program_stop(self, connection: Connection, payload: Any) -> None:
        await self._executions.stop(connection.connection_id)

    def _on_output(self, connection_id: str, chunk: OutputChunk) -> None:
        data: Dict[str, Any] = {"output": chunk.text}
        if self._tag_streams:
            data["stream"] = chunk.stream.value
        self.send(connection_id, EventKind.PROGRAM_OUTPUT, data)

    def _on_terminal(self, connection_id: str, terminal: TerminalEvent) -> None:
        self.send(
            connection_id, EventKind.PROGRAM_OUTPUT, {"output": EXECUTION_COMPLETE_BANNER}
        )
        self.send(
            connection_id,
            EventKind.PROGRAM_EXIT,
            {
                "status": terminal.status.value,
                "exitCode": terminal.exit_code,
                "durationMs": terminal.duration_ms,
            },
        )
