"""Shared test helpers."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from codebridge.models.events import EventKind
from codebridge.models.execution import TerminalEvent
from codebridge.services.execution import ExecutionSessionManager


class EventRecorder:
    """Stands in for a transport: records (connection_id, kind, data) sends."""

    def __init__(self):
        self.events: List[Tuple[str, EventKind, Dict[str, Any]]] = []

    def __call__(self, connection_id: str, kind: EventKind, data: Dict[str, Any]):
        self.events.append((connection_id, kind, data))

    def for_connection(self, connection_id: str) -> List[Tuple[EventKind, Dict[str, Any]]]:
        return [(k, d) for cid, k, d in self.events if cid == connection_id]

    def kinds(self, connection_id: str) -> List[EventKind]:
        return [k for k, _ in self.for_connection(connection_id)]

    def clear(self) -> None:
        self.events.clear()


class RunRecorder:
    """Collects output and terminal callbacks of an ExecutionSessionManager."""

    def __init__(self, manager: ExecutionSessionManager):
        self.output: Dict[str, List[Any]] = {}
        self.terminals: Dict[str, List[TerminalEvent]] = {}
        self._done: Dict[str, asyncio.Event] = {}
        manager.on_output(self._on_output)
        manager.on_terminal(self._on_terminal)

    def _event(self, connection_id: str) -> asyncio.Event:
        return self._done.setdefault(connection_id, asyncio.Event())

    async def _on_output(self, connection_id, chunk):
        self.output.setdefault(connection_id, []).append(chunk)

    async def _on_terminal(self, connection_id, terminal):
        self.terminals.setdefault(connection_id, []).append(terminal)
        self._event(connection_id).set()

    def reset(self, connection_id: str) -> None:
        """Re-arm wait_terminal for the next run of a connection."""
        self._event(connection_id).clear()

    def text(self, connection_id: str) -> str:
        return "".join(chunk.text for chunk in self.output.get(connection_id, []))

    async def wait_terminal(self, connection_id: str, timeout: float = 20) -> TerminalEvent:
        await asyncio.wait_for(self._event(connection_id).wait(), timeout=timeout)
        return self.terminals[connection_id][-1]


async def collect_run(handle) -> Tuple[list, Optional[TerminalEvent]]:
    """Drain a ProcessHandle: returns (chunks, terminal event)."""
    chunks = []
    terminal = None
    async for item in handle.output():
        if isinstance(item, TerminalEvent):
            terminal = item
        else:
            chunks.append(item)
    return chunks, terminal


