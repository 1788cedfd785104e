"""Unit tests for HealthService."""

from unittest.mock import patch

import pytest

from codebridge.config import settings
from codebridge.services.health import HealthService, HealthStatus
from codebridge.services.sandbox.runtime import LocalRuntime, NsjailRuntime
from codebridge.services.sandbox.workspace import DiskStatus, WorkspaceManager


@pytest.fixture
def health(workspace_manager):
    return HealthService(workspace_manager, LocalRuntime())


class TestWorkspaceCheck:
    """Test the workspace storage check."""

    @pytest.mark.asyncio
    async def test_healthy(self, health):
        result = await health.check_workspace()

        assert result.status == HealthStatus.HEALTHY
        assert result.details["writable"] is True
        assert result.response_time_ms is not None

    @pytest.mark.asyncio
    async def test_storage_exhausted(self, health, workspace_manager):
        low = DiskStatus(total_mb=1000.0, free_mb=50.0, writable=True)
        with patch.object(settings, "min_free_disk_mb", 100), patch.object(
            workspace_manager, "disk_status", return_value=low
        ):
            result = await health.check_workspace()

        assert result.status == HealthStatus.UNHEALTHY
        assert result.error == "Temporary storage exhausted"

    @pytest.mark.asyncio
    async def test_storage_low(self, health, workspace_manager):
        low = DiskStatus(total_mb=1000.0, free_mb=150.0, writable=True)
        with patch.object(settings, "min_free_disk_mb", 100), patch.object(
            workspace_manager, "disk_status", return_value=low
        ):
            result = await health.check_workspace()

        assert result.status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_not_writable(self, health, workspace_manager):
        status = DiskStatus(total_mb=1000.0, free_mb=900.0, writable=False)
        with patch.object(workspace_manager, "disk_status", return_value=status):
            result = await health.check_workspace()

        assert result.status == HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_initialization_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        manager = WorkspaceManager(root=str(blocker / "root"))
        manager.prepare_root()

        result = await HealthService(manager, LocalRuntime()).check_workspace()

        assert result.status == HealthStatus.UNHEALTHY
        assert "workspace root" in result.error


class TestSandboxCheck:
    """Test the sandbox runtime check."""

    @pytest.mark.asyncio
    async def test_missing_binary(self, workspace_manager):
        with patch.object(settings, "nsjail_binary", "/nonexistent/nsjail"):
            result = await HealthService(
                workspace_manager, NsjailRuntime()
            ).check_sandbox_runtime()

        assert result.status == HealthStatus.UNHEALTHY
        assert "/nonexistent/nsjail" in result.error

    @pytest.mark.asyncio
    async def test_local_runtime_degraded(self, health):
        with patch.object(settings, "api_debug", False):
            result = await health.check_sandbox_runtime()
        assert result.status == HealthStatus.DEGRADED
        assert result.details["runtime"] == "local"

    @pytest.mark.asyncio
    async def test_local_runtime_in_debug(self, health):
        with patch.object(settings, "api_debug", True):
            result = await health.check_sandbox_runtime()
        assert result.status == HealthStatus.HEALTHY


class TestCheckAll:
    """Test aggregation and caching."""

    @pytest.mark.asyncio
    async def test_results_cached(self, health):
        first = await health.check_all_services()
        with patch.object(health, "check_workspace") as check:
            second = await health.check_all_services()
        check.assert_not_called()
        assert set(first) == {"workspace", "sandbox"}
        assert second["workspace"] is first["workspace"]

    @pytest.mark.asyncio
    async def test_overall_status(self, health):
        with patch.object(settings, "api_debug", False):
            results = await health.check_all_services(use_cache=False)
        assert health.get_overall_status(results) == HealthStatus.DEGRADED

    def test_to_dict(self, health):
        from codebridge.services.health import HealthCheckResult

        result = HealthCheckResult(service="sandbox", status=HealthStatus.UNHEALTHY, error="x")
        data = result.to_dict()
        assert data["status"] == "unhealthy"
        assert data["error"] == "x"
        assert "response_time_ms" not in data
