"""Pytest configuration and shared fixtures."""

import os
import tempfile

import pytest

# Set test environment before importing config.
# Runs use the unisolated local runtime so tests need no docker or nsjail.
os.environ.setdefault("SANDBOX_RUNTIME", "local")
os.environ.setdefault("WORKSPACE_ROOT", tempfile.mkdtemp(prefix="codebridge-test-"))
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("KILL_GRACE_SECONDS", "2")
os.environ.setdefault("MIN_FREE_DISK_MB", "0")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from codebridge.config import settings  # noqa: E402
from codebridge.services.execution import ExecutionSessionManager  # noqa: E402
from codebridge.services.metrics import MetricsService  # noqa: E402
from codebridge.services.sandbox.runner import SandboxRunner  # noqa: E402
from codebridge.services.sandbox.runtime import LocalRuntime  # noqa: E402
from codebridge.services.sandbox.workspace import WorkspaceManager  # noqa: E402
from tests.helpers import EventRecorder, RunRecorder  # noqa: E402


@pytest.fixture
def workspace_manager(tmp_path):
    """Workspace manager rooted in a per-test temp directory."""
    manager = WorkspaceManager(root=str(tmp_path / "workspaces"))
    manager.prepare_root()
    return manager


@pytest.fixture
def runner(workspace_manager):
    """Sandbox runner using the local runtime."""
    return SandboxRunner(workspace_manager, LocalRuntime())


@pytest.fixture
def metrics():
    return MetricsService()


@pytest.fixture
def execution_manager(runner, workspace_manager, metrics):
    """Execution session manager with a generous timeout."""
    return ExecutionSessionManager(
        runner, workspace_manager, timeout_seconds=15, metrics=metrics
    )


@pytest.fixture
def run_recorder(execution_manager):
    return RunRecorder(execution_manager)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def client():
    """FastAPI test client with fresh service singletons."""
    from fastapi.testclient import TestClient

    from codebridge.dependencies.services import reset_services
    from codebridge.main import app

    reset_services()
    with TestClient(app) as test_client:
        yield test_client
    reset_services()


@pytest.fixture
def test_settings():
    return settings
