"""Per-connection workspace directories on the host filesystem."""

import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from ...config import settings
from ...config.languages import LanguageConfig

logger = structlog.get_logger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


@dataclass
class DiskStatus:
    """Free space on the filesystem holding the workspace root."""

    total_mb: float
    free_mb: float
    writable: bool

    @property
    def used_percent(self) -> float:
        if not self.total_mb:
            return 0.0
        return round((1 - self.free_mb / self.total_mb) * 100, 1)


class WorkspaceManager:
    """Manages workspace directories under a single temp root.

    Each connection gets ``<root>/<connection_id>``, created lazily and
    reused across that connection's runs. Directories are never shared
    between connections.
    """

    def __init__(self, root: Optional[str] = None):
        """Initialize the workspace manager.

        Args:
            root: Workspace root; defaults to settings.workspace_root
        """
        self._root = Path(root or settings.workspace_root)
        self._initialization_error: Optional[str] = None

    @property
    def root(self) -> Path:
        """Get the workspace root."""
        return self._root

    def prepare_root(self) -> int:
        """Create the root and sweep anything left by a previous process.

        Returns:
            Number of stale entries removed
        """
        removed = 0
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._initialization_error = (
                f"Failed to create workspace root {self._root}: {e}"
            )
            logger.error(
                "Workspace root creation failed",
                root=str(self._root),
                error=str(e),
            )
            return removed

        for entry in self._root.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(str(entry))
                else:
                    entry.unlink()
                removed += 1
            except OSError as e:
                logger.warning(
                    "Failed to sweep stale workspace entry",
                    path=str(entry),
                    error=str(e),
                )

        if removed:
            logger.info("Swept stale workspaces", removed=removed, root=str(self._root))
        return removed

    def get_initialization_error(self) -> Optional[str]:
        """Get initialization error if any."""
        return self._initialization_error

    def path_for(self, connection_id: str) -> Path:
        """Workspace path for a connection (not created)."""
        if not _SAFE_NAME.match(connection_id or ""):
            raise ValueError(f"Unsafe workspace name: {connection_id!r}")
        return self._root / connection_id

    def ensure(self, connection_id: str) -> Path:
        """Create the connection's workspace if absent and return it."""
        workspace = self.path_for(connection_id)
        workspace.mkdir(parents=True, exist_ok=True)
        # Sandboxed programs may run as an unprivileged user; each
        # workspace belongs to one connection only.
        os.chmod(str(workspace), 0o777)
        return workspace

    def write_source(
        self, workspace: Path, language: LanguageConfig, code: str
    ) -> Path:
        """Write submitted code under the language's fixed file name."""
        source_path = workspace / language.source_file
        source_path.write_text(code, encoding="utf-8")
        os.chmod(str(source_path), 0o644)
        return source_path

    def remove_artifacts(self, workspace: Path, language: LanguageConfig) -> int:
        """Delete the language's generated files from a workspace.

        Returns:
            Number of files removed
        """
        removed = 0
        for name in language.artifacts:
            path = workspace / name
            try:
                if path.exists():
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(
                    "Failed to remove run artifact",
                    path=str(path),
                    error=str(e),
                )
        return removed

    def remove(self, workspace: Path) -> bool:
        """Remove a workspace recursively.

        Failures are logged and never raised; teardown continues regardless.

        Returns:
            True if the directory no longer exists
        """
        try:
            if workspace.exists():
                shutil.rmtree(str(workspace))
            logger.debug("Removed workspace", workspace=workspace.name[:12])
            return True
        except Exception as e:
            logger.warning(
                "Failed to remove workspace",
                workspace=workspace.name[:12],
                error=str(e),
            )
            return False

    def disk_status(self) -> DiskStatus:
        """Report free space and writability of the workspace root."""
        target = self._root if self._root.exists() else self._root.parent
        usage = shutil.disk_usage(str(target))
        return DiskStatus(
            total_mb=round(usage.total / (1024 * 1024), 1),
            free_mb=round(usage.free / (1024 * 1024), 1),
            writable=os.access(str(target), os.W_OK),
        )
