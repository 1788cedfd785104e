"""Sandboxed execution services.

This package provides the pieces that launch and tear down sandboxed runs:
- workspace.py: per-connection workspace directories and disk status
- runtime.py: docker / nsjail / local launch command builders
- runner.py: SandboxRunner and the per-run ProcessHandle
"""

from .workspace import WorkspaceManager, DiskStatus
from .runtime import (
    SandboxRuntime,
    DockerRuntime,
    NsjailRuntime,
    LocalRuntime,
    create_runtime,
)
from .runner import SandboxRunner, ProcessHandle

__all__ = [
    "WorkspaceManager",
    "DiskStatus",
    "SandboxRuntime",
    "DockerRuntime",
    "NsjailRuntime",
    "LocalRuntime",
    "create_runtime",
    "SandboxRunner",
    "ProcessHandle",
]
