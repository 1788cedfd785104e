"""Execution session management.

Maps each live connection to at most one running sandbox. The manager owns
the run state machine (idle -> running -> completed / timed_out / killed ->
idle), the wall-clock timer, and the teardown that guarantees no sandbox
outlives its connection.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from ..config import settings
from ..config.languages import normalize_language
from ..models.errors import (
    ConnectionNotFoundError,
    LaunchFailedError,
    MissingFieldsError,
    SessionBusyError,
    UnsupportedLanguageError,
)
from ..models.execution import (
    ExecutionRequest,
    OutputChunk,
    RunState,
    TerminalEvent,
    TerminalStatus,
)
from .metrics import MetricsService
from .sandbox.runner import ProcessHandle, SandboxRunner
from .sandbox.workspace import WorkspaceManager

logger = structlog.get_logger(__name__)

OutputCallback = Callable[[str, OutputChunk], Union[Awaitable[None], None]]
TerminalCallback = Callable[[str, TerminalEvent], Union[Awaitable[None], None]]


@dataclass
class ExecutionSession:
    """Run state for one connection."""

    connection_id: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    state: RunState = RunState.IDLE
    workspace_dir: Optional[Path] = None
    handle: Optional[ProcessHandle] = None
    request: Optional[ExecutionRequest] = None
    started_at: Optional[float] = None
    timeout_handle: Optional[asyncio.TimerHandle] = None
    consumer: Optional[asyncio.Task] = None
    last_terminal: Optional[TerminalEvent] = None
    closed: bool = False

    @property
    def is_running(self) -> bool:
        return self.state is RunState.RUNNING and self.handle is not None


class ExecutionSessionManager:
    """Registry of execution sessions keyed by connection id.

    Every session carries its own lock; operations on different
    connections never contend.
    """

    def __init__(
        self,
        runner: SandboxRunner,
        workspace_manager: WorkspaceManager,
        timeout_seconds: Optional[float] = None,
        metrics: Optional[MetricsService] = None,
    ):
        """Initialize the session manager.

        Args:
            runner: Launches sandboxed processes
            workspace_manager: Creates and wipes per-connection workspaces
            timeout_seconds: Wall-clock limit per run; defaults to settings
            metrics: Optional metrics sink for finished runs
        """
        self._runner = runner
        self._workspaces = workspace_manager
        self._timeout = timeout_seconds or settings.max_execution_time
        self._kill_grace = settings.kill_grace_seconds
        self._metrics = metrics
        self._sessions: Dict[str, ExecutionSession] = {}
        self._output_callbacks: List[OutputCallback] = []
        self._terminal_callbacks: List[TerminalCallback] = []

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def on_output(self, callback: OutputCallback) -> None:
        """Subscribe to output chunks of every run."""
        self._output_callbacks.append(callback)

    def on_terminal(self, callback: TerminalCallback) -> None:
        """Subscribe to the terminal event of every run."""
        self._terminal_callbacks.append(callback)

    def register(self, connection_id: str) -> ExecutionSession:
        """Create the idle session for a new connection."""
        session = self._sessions.get(connection_id)
        if session is None:
            session = ExecutionSession(connection_id=connection_id)
            self._sessions[connection_id] = session
            logger.debug("Registered execution session", connection_id=connection_id[:12])
        return session

    def get_session(self, connection_id: str) -> Optional[ExecutionSession]:
        return self._sessions.get(connection_id)

    def get_state(self, connection_id: str) -> Optional[RunState]:
        """Current run state, or None for unknown connections."""
        session = self._sessions.get(connection_id)
        return session.state if session else None

    def session_count(self) -> int:
        return len(self._sessions)

    def active_count(self) -> int:
        """Number of connections with a run in progress."""
        return sum(1 for s in self._sessions.values() if s.is_running)

    async def submit_run(
        self, connection_id: str, request: ExecutionRequest
    ) -> ExecutionSession:
        """Start a run for a connection.

        Args:
            connection_id: Connection that owns the run and receives output
            request: Code and language to run

        Returns:
            The session, now in the running state

        Raises:
            MissingFieldsError: code, language or connection id missing
            UnsupportedLanguageError: language not in the enabled allow-set
            ConnectionNotFoundError: no live connection with this id
            SessionBusyError: a run is already active for the connection
            LaunchFailedError: the sandbox could not be started
        """
        missing = []
        if not request.code:
            missing.append("code")
        if not request.language:
            missing.append("language")
        if not connection_id:
            missing.append("connectionId")
        if missing:
            raise MissingFieldsError(missing)

        language = normalize_language(request.language)
        if not settings.is_language_enabled(language):
            raise UnsupportedLanguageError(
                request.language, supported=settings.get_enabled_languages()
            )

        session = self._sessions.get(connection_id)
        if session is None or session.closed:
            raise ConnectionNotFoundError(connection_id)

        async with session.lock:
            # terminate() may have run while we waited for the lock
            if session.closed:
                raise ConnectionNotFoundError(connection_id)
            if session.state is RunState.RUNNING:
                logger.info(
                    "Rejected run, session busy",
                    connection_id=connection_id[:12],
                )
                raise SessionBusyError(connection_id)

            try:
                workspace = self._workspaces.ensure(connection_id)
            except (OSError, ValueError) as e:
                raise LaunchFailedError(f"Failed to prepare workspace: {e}")
            session.workspace_dir = workspace

            try:
                handle = await self._runner.start(
                    workspace, language, request.code, time_limit=self._timeout
                )
            except (LaunchFailedError, UnsupportedLanguageError):
                self._workspaces.remove(workspace)
                session.state = RunState.IDLE
                raise

            session.handle = handle
            session.request = ExecutionRequest(
                code=request.code, language=language, connection_id=connection_id
            )
            session.state = RunState.RUNNING
            session.started_at = time.time()
            session.timeout_handle = asyncio.get_running_loop().call_later(
                self._timeout, handle.kill, TerminalStatus.TIMED_OUT, "timed_out"
            )
            session.consumer = asyncio.create_task(self._consume(session, handle))

        logger.info(
            "Run started",
            connection_id=connection_id[:12],
            language=language,
            sandbox=handle.sandbox_name,
            timeout=self._timeout,
        )
        return session

    async def forward_input(self, connection_id: str, data: bytes) -> bool:
        """Write to the running program's stdin.

        Returns:
            False when there is no running program; input is dropped
        """
        session = self._sessions.get(connection_id)
        if session is None or not session.is_running:
            return False
        handle = session.handle
        if handle is None:
            return False
        return await handle.write_stdin(data)

    async def stop(self, connection_id: str) -> bool:
        """Kill the active run without closing the connection.

        Returns:
            True if a run was killed
        """
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        async with session.lock:
            if not session.is_running:
                return False
            stopped = session.handle.kill(TerminalStatus.KILLED, "stopped")
        if stopped:
            logger.info("Run stopped by user", connection_id=connection_id[:12])
        return stopped

    async def terminate(self, connection_id: str) -> None:
        """Remove a connection's session, killing any run and wiping its workspace.

        Safe to call for unknown connections and more than once.
        """
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return

        async with session.lock:
            session.closed = True
            consumer = session.consumer
            if session.handle is not None:
                session.handle.kill(TerminalStatus.KILLED, "disconnected")

        # Wait outside the lock; the consumer takes it to finish the run
        if consumer is not None and not consumer.done():
            try:
                await asyncio.wait_for(
                    asyncio.shield(consumer), timeout=self._kill_grace * 2
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Run did not finish after kill",
                    connection_id=connection_id[:12],
                    grace_seconds=self._kill_grace * 2,
                )
                consumer.cancel()

        if session.workspace_dir is not None:
            self._workspaces.remove(session.workspace_dir)

        logger.info("Terminated execution session", connection_id=connection_id[:12])

    async def shutdown(self) -> None:
        """Terminate every session."""
        connection_ids = list(self._sessions.keys())
        if not connection_ids:
            return
        logger.info("Terminating execution sessions", count=len(connection_ids))
        await asyncio.gather(
            *(self.terminate(cid) for cid in connection_ids), return_exceptions=True
        )

    async def _consume(self, session: ExecutionSession, handle: ProcessHandle) -> None:
        terminal: Optional[TerminalEvent] = None
        async for item in handle.output():
            if isinstance(item, TerminalEvent):
                terminal = item
            else:
                await self._notify(self._output_callbacks, session.connection_id, item)

        await self._finish(session, handle, terminal)

    async def _finish(
        self,
        session: ExecutionSession,
        handle: ProcessHandle,
        terminal: TerminalEvent,
    ) -> None:
        async with session.lock:
            if session.timeout_handle is not None:
                session.timeout_handle.cancel()
                session.timeout_handle = None

            if session.handle is not handle:
                return

            session.handle = None
            session.consumer = None
            session.last_terminal = terminal
            session.state = terminal.status.run_state
            if session.workspace_dir is not None:
                self._workspaces.remove(session.workspace_dir)
            language = session.request.language if session.request else handle.language.code

        if self._metrics is not None:
            self._metrics.record_run(language, terminal.status.value, terminal.duration_ms)

        logger.info(
            "Run finished",
            connection_id=session.connection_id[:12],
            status=terminal.status.value,
            exit_code=terminal.exit_code,
            duration_ms=terminal.duration_ms,
        )

        await self._notify(self._terminal_callbacks, session.connection_id, terminal)

        async with session.lock:
            if session.state is terminal.status.run_state:
                session.state = RunState.IDLE

    async def _notify(self, callbacks: List[Callable], connection_id: str, item: Any) -> None:
        for callback in callbacks:
            try:
                result = callback(connection_id, item)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Execution callback failed",
                    connection_id=connection_id[:12],
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(e),
                )
