"""Launch one isolated process per run and stream its I/O.

Uses asyncio subprocess pipes. Output from stdout and stderr is pumped
into a single per-run queue in arrival order; the queue always ends with
exactly one TerminalEvent.
"""

import asyncio
import codecs
import os
import re
import signal
import time
import uuid
from pathlib import Path
from typing import AsyncIterator, List, Optional, Union

import structlog

from ...config import settings
from ...config.languages import LanguageConfig, get_language
from ...models.errors import LaunchFailedError, UnsupportedLanguageError
from ...models.execution import (
    OutputChunk,
    OutputStream,
    TerminalEvent,
    TerminalStatus,
)
from .runtime import SandboxRuntime, create_runtime
from .workspace import WorkspaceManager

logger = structlog.get_logger(__name__)

# Strips non-printing control characters; keeps \t \n \r and ESC
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1A\x1C-\x1F\x7F]")

TIME_LIMIT_NOTICE = (
    "\n***********Process Terminated: Time Limit Exceeded ({limit})***********\n"
)
OUTPUT_LIMIT_NOTICE = "\n[Output truncated - size limit exceeded]\n"

# Unread input held for a program before further input is dropped
STDIN_BUFFER_LIMIT = 64 * 1024

OutputItem = Union[OutputChunk, TerminalEvent]


def describe_limit(seconds: float) -> str:
    """Human readable time limit ("1 minute", "90 seconds", "1 second")."""
    if seconds == 60:
        return "1 minute"
    if seconds % 60 == 0:
        return f"{int(seconds // 60)} minutes"
    if seconds == 1:
        return "1 second"
    return f"{seconds:g} seconds"


def sanitize_output(text: str) -> str:
    """Remove control characters that do not belong in terminal output."""
    return _CONTROL_CHARS.sub("", text)


class ProcessHandle:
    """Handle for one running sandbox process.

    The handle owns the process until the terminal event is committed.
    ``kill()`` and natural exit may race; whichever is observed first
    decides the terminal status and the other is ignored.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        sandbox_name: str,
        workspace: Path,
        language: LanguageConfig,
        runtime: SandboxRuntime,
        workspace_manager: WorkspaceManager,
        time_limit: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
        chunk_size: Optional[int] = None,
        kill_grace_seconds: Optional[float] = None,
    ):
        self._process = process
        self.sandbox_name = sandbox_name
        self.workspace = workspace
        self.language = language
        self._runtime = runtime
        self._workspaces = workspace_manager
        self.time_limit = time_limit or settings.max_execution_time
        self._max_output_bytes = max_output_bytes or settings.max_output_bytes
        self._chunk_size = chunk_size or settings.output_read_chunk_size
        self._kill_grace = kill_grace_seconds or settings.kill_grace_seconds

        self._queue: "asyncio.Queue[OutputItem]" = asyncio.Queue()
        self._seq = 0
        self._output_bytes = 0
        self._truncated = False

        self._kill_status: Optional[TerminalStatus] = None
        self._kill_reason: Optional[str] = None
        self._exited = False
        self._terminal: Optional[TerminalEvent] = None
        self._done: "asyncio.Future[TerminalEvent]" = (
            asyncio.get_running_loop().create_future()
        )

        self._started_monotonic = time.monotonic()
        self._pumps: List[asyncio.Task] = []
        self._watcher: Optional[asyncio.Task] = None
        self._kill_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> int:
        """Process id of the launcher process."""
        return self._process.pid

    @property
    def is_running(self) -> bool:
        """True until the process exits or a kill has been requested."""
        return (
            not self._exited
            and self._kill_status is None
            and self._process.returncode is None
        )

    @property
    def terminal(self) -> Optional[TerminalEvent]:
        """Terminal event once committed."""
        return self._terminal

    def start_io(self) -> None:
        """Start the output pumps and the exit watcher."""
        self._pumps = [
            asyncio.create_task(self._pump(self._process.stdout, OutputStream.STDOUT)),
            asyncio.create_task(self._pump(self._process.stderr, OutputStream.STDERR)),
        ]
        self._watcher = asyncio.create_task(self._watch())

    async def output(self) -> AsyncIterator[OutputItem]:
        """Yield output chunks in arrival order, then the terminal event.

        Single consumer only.
        """
        while True:
            item = await self._queue.get()
            yield item
            if isinstance(item, TerminalEvent):
                return

    async def wait(self) -> TerminalEvent:
        """Wait for the terminal event."""
        return await asyncio.shield(self._done)

    async def write_stdin(self, data: bytes) -> bool:
        """Forward bytes to the program's stdin.

        Never blocks longer than the kill grace period: input is dropped
        while a program leaves earlier input unread, and a write whose
        flush stalls returns False.

        Returns:
            False when the input was not delivered (process terminated,
            broken pipe, or the program is not reading stdin)
        """
        if not self.is_running:
            return False

        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return False

        if stdin.transport.get_write_buffer_size() >= STDIN_BUFFER_LIMIT:
            logger.debug(
                "Dropped input for sandbox not reading stdin",
                sandbox=self.sandbox_name,
                size=len(data),
            )
            return False

        try:
            stdin.write(data)
            await asyncio.wait_for(stdin.drain(), timeout=self._kill_grace)
            return True
        except asyncio.TimeoutError:
            logger.info(
                "Sandbox stdin stalled",
                sandbox=self.sandbox_name,
                buffered=stdin.transport.get_write_buffer_size(),
            )
            return False
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(
                "Dropped input for exited sandbox",
                sandbox=self.sandbox_name,
                error=str(e),
            )
            return False

    def kill(
        self,
        status: TerminalStatus = TerminalStatus.KILLED,
        reason: Optional[str] = None,
    ) -> bool:
        """Terminate the process immediately.

        Idempotent; a no-op after natural exit or a previous kill.

        Returns:
            True if this call initiated the kill
        """
        if self._exited or self._terminal is not None:
            return False
        if self._process.returncode is not None:
            return False
        if self._kill_status is not None:
            return False

        self._kill_status = status
        self._kill_reason = reason or status.value

        self._signal_group(signal.SIGKILL)

        kill_command = self._runtime.kill_command(self.sandbox_name)
        if kill_command:
            self._kill_task = asyncio.create_task(self._run_kill_command(kill_command))

        logger.info(
            "Killing sandbox",
            sandbox=self.sandbox_name,
            status=status.value,
            reason=self._kill_reason,
        )
        return True

    def _signal_group(self, sig: int) -> None:
        try:
            # Launched with start_new_session, so the pid is the group id
            os.killpg(self._process.pid, sig)
        except (ProcessLookupError, PermissionError):
            try:
                self._process.send_signal(sig)
            except ProcessLookupError:
                pass

    async def _run_kill_command(self, command: List[str]) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
        except Exception as e:
            logger.warning(
                "Sandbox kill command failed",
                sandbox=self.sandbox_name,
                error=str(e),
            )

    async def _pump(
        self, stream: Optional[asyncio.StreamReader], kind: OutputStream
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(self._chunk_size)
            if not data:
                if not self._truncated:
                    self._emit(kind, decoder.decode(b"", final=True))
                return
            if self._truncated:
                # Keep draining so the program never blocks on a full pipe
                continue

            remaining = self._max_output_bytes - self._output_bytes
            if len(data) > remaining:
                # A character split at the limit stays in the decoder
                self._emit(kind, decoder.decode(data[:remaining]))
                self._truncate()
                continue

            self._output_bytes += len(data)
            self._emit(kind, decoder.decode(data))

    def _emit(self, kind: OutputStream, text: str) -> None:
        text = sanitize_output(text)
        if text:
            self._put_chunk(kind, text)

    def _truncate(self) -> None:
        self._output_bytes = self._max_output_bytes
        self._truncated = True
        self._put_chunk(OutputStream.SYSTEM, OUTPUT_LIMIT_NOTICE)
        self.kill(TerminalStatus.KILLED, reason="output_limit")

    def _put_chunk(self, kind: OutputStream, text: str) -> None:
        self._seq += 1
        self._queue.put_nowait(OutputChunk(seq=self._seq, stream=kind, text=text))

    async def _watch(self) -> None:
        returncode = await self._process.wait()

        # First observed outcome wins; later kill() calls are no-ops
        self._exited = True
        status = self._kill_status or TerminalStatus.COMPLETED
        reason = self._kill_reason

        # Let the pumps drain what the process wrote before exiting
        _, pending = await asyncio.wait(self._pumps, timeout=self._kill_grace)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                "Output pipes still open after exit",
                sandbox=self.sandbox_name,
                pending=len(pending),
            )

        if status is TerminalStatus.TIMED_OUT:
            self._put_chunk(
                OutputStream.SYSTEM,
                TIME_LIMIT_NOTICE.format(limit=describe_limit(self.time_limit)),
            )

        self._workspaces.remove_artifacts(self.workspace, self.language)

        duration_ms = round((time.monotonic() - self._started_monotonic) * 1000, 2)
        self._commit(
            TerminalEvent(
                status=status,
                exit_code=returncode,
                duration_ms=duration_ms,
                reason=reason,
            )
        )

    def _commit(self, event: TerminalEvent) -> bool:
        if self._terminal is not None:
            return False
        self._terminal = event
        self._queue.put_nowait(event)
        if not self._done.done():
            self._done.set_result(event)

        logger.info(
            "Sandbox finished",
            sandbox=self.sandbox_name,
            status=event.status.value,
            exit_code=event.exit_code,
            duration_ms=event.duration_ms,
            output_bytes=self._output_bytes,
        )
        return True


class SandboxRunner:
    """Launches sandboxed runs through the configured runtime.

    Spawns one sandbox process per run.
    """

    def __init__(
        self,
        workspace_manager: WorkspaceManager,
        runtime: Optional[SandboxRuntime] = None,
    ):
        """Initialize the runner.

        Args:
            workspace_manager: Used to write sources and remove artifacts
            runtime: Sandbox runtime; defaults to settings.sandbox_runtime
        """
        self._workspaces = workspace_manager
        self._runtime = runtime or create_runtime()

    @property
    def runtime(self) -> SandboxRuntime:
        """Get the sandbox runtime."""
        return self._runtime

    async def start(
        self,
        workspace: Path,
        language: str,
        source_text: str,
        time_limit: Optional[float] = None,
    ) -> ProcessHandle:
        """Write the source into the workspace and launch the sandbox.

        Args:
            workspace: Host directory mounted into the sandbox
            language: Language tag from the enabled allow-set
            source_text: Program source
            time_limit: Limit reported in the time-limit notice

        Returns:
            ProcessHandle for the running program

        Raises:
            UnsupportedLanguageError: language not known or not enabled
            LaunchFailedError: the process could not be started
        """
        config = get_language(language)
        if config is None or not settings.is_language_enabled(language):
            raise UnsupportedLanguageError(
                language, supported=settings.get_enabled_languages()
            )

        sandbox_name = f"codebridge-{uuid.uuid4().hex[:12]}"

        try:
            self._workspaces.write_source(workspace, config, source_text)
            argv = self._runtime.build_command(workspace, config, sandbox_name)
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(workspace),
                env=self._runtime.build_process_env(workspace, config),
                start_new_session=True,  # New process group for clean kill
            )
        except (OSError, ValueError) as e:
            logger.error(
                "Sandbox launch failed",
                sandbox=sandbox_name,
                runtime=self._runtime.name,
                language=config.code,
                error=str(e),
            )
            self._workspaces.remove_artifacts(workspace, config)
            raise LaunchFailedError(f"Failed to start sandbox: {e}")

        handle = ProcessHandle(
            process=process,
            sandbox_name=sandbox_name,
            workspace=workspace,
            language=config,
            runtime=self._runtime,
            workspace_manager=self._workspaces,
            time_limit=time_limit,
        )
        handle.start_io()

        logger.info(
            "Started sandbox",
            sandbox=sandbox_name,
            runtime=self._runtime.name,
            language=config.code,
            pid=process.pid,
        )
        return handle
