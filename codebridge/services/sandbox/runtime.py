"""Sandbox runtimes: build the command line that launches one isolated run.

The runtime decides HOW a run is isolated (docker container, nsjail jail, or
nothing at all for local development). Every runtime honours the same
contract: no network, the workspace mounted read/write at the configured
in-sandbox path, that path as the working directory, and stdio attached.
"""

import os
import shutil
import sys
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from ...config import settings
from ...config.languages import LanguageConfig

logger = structlog.get_logger(__name__)

# uid/gid of "nobody"; runs never execute as root inside nsjail
SANDBOX_USER_ID = 65534


class SandboxRuntime:
    """Base class for sandbox runtimes."""

    name = "base"

    def __init__(self, mount_path: Optional[str] = None):
        self._mount_path = mount_path or settings.sandbox_mount_path

    @property
    def mount_path(self) -> str:
        """In-sandbox path of the workspace."""
        return self._mount_path

    @property
    def binary(self) -> Optional[str]:
        """Executable the runtime needs on PATH, if any."""
        return None

    def is_available(self) -> bool:
        """Check if the runtime binary can be found."""
        return self.binary is None or shutil.which(self.binary) is not None

    def build_command(
        self, workspace: Path, language: LanguageConfig, sandbox_name: str
    ) -> List[str]:
        """Build the argv that launches the run."""
        raise NotImplementedError

    def build_process_env(
        self, workspace: Path, language: LanguageConfig
    ) -> Optional[Dict[str, str]]:
        """Environment for the launcher process itself (None = inherit)."""
        return None

    def kill_command(self, sandbox_name: str) -> Optional[List[str]]:
        """Extra command that tears the sandbox down, if signals are not enough."""
        return None

    def build_sandbox_env(self, language: LanguageConfig) -> Dict[str, str]:
        """Build the environment whitelist seen by the sandboxed program."""
        env: Dict[str, str] = {
            "PATH": "/usr/local/bin:/usr/bin:/bin",
            "HOME": "/tmp",
            "TMPDIR": "/tmp",
            "LANG": "C.UTF-8",
        }
        env.update(language.environment)
        return env


class DockerRuntime(SandboxRuntime):
    """One throwaway container per run (``docker run -i --rm``)."""

    name = "docker"

    @property
    def binary(self) -> str:
        return settings.docker_binary

    def image_for(self, language: LanguageConfig) -> str:
        """Container image for a language."""
        return f"{settings.docker_image_prefix}{language.image}"

    def build_command(
        self, workspace: Path, language: LanguageConfig, sandbox_name: str
    ) -> List[str]:
        args: List[str] = [
            self.binary,
            "run",
            "-i",
            "--rm",
            "--name",
            sandbox_name,
            "--network=none",
            "--memory",
            f"{settings.max_memory_mb}m",
            "--pids-limit",
            str(settings.max_processes),
            "--label",
            "com.codebridge.managed=true",
            "--label",
            f"com.codebridge.language={language.code}",
            "-v",
            f"{workspace}:{self.mount_path}",
            "--workdir",
            self.mount_path,
        ]

        for key, value in self.build_sandbox_env(language).items():
            args.extend(["-e", f"{key}={value}"])

        args.append(self.image_for(language))
        args.extend(["/bin/sh", "-c", language.execution_command])
        return args

    def kill_command(self, sandbox_name: str) -> List[str]:
        # Killing the docker client does not stop the container
        return [self.binary, "kill", sandbox_name]


class NsjailRuntime(SandboxRuntime):
    """nsjail-based isolation on the host.

    Translates the service's resource settings into the corresponding
    nsjail command-line flags.
    """

    name = "nsjail"

    @property
    def binary(self) -> str:
        return settings.nsjail_binary

    def build_command(
        self, workspace: Path, language: LanguageConfig, sandbox_name: str
    ) -> List[str]:
        args: List[str] = [self.binary]

        # Execution mode
        args.extend(["--mode", "o"])

        # Suppress nsjail diagnostic output
        args.append("--really_quiet")

        # Keep the child in our session so stdin pipes stay connected
        args.append("--skip_setsid")

        # Backstop only; the session manager's timer fires first
        args.extend(
            [
                "--time_limit",
                str(settings.max_execution_time + int(settings.kill_grace_seconds) + 1),
            ]
        )

        # Per-process resource limits (rlimits)
        args.extend(["--rlimit_as", str(settings.max_memory_mb)])
        args.extend(["--rlimit_fsize", "100"])  # Max file size: 100MB
        args.extend(["--rlimit_nofile", "256"])  # Max open files
        args.extend(["--rlimit_nproc", str(settings.max_processes)])

        # Network isolation: new net namespace with no interfaces
        args.append("--iface_no_lo")

        # Read-only view of the host root, workspace mounted read/write
        args.extend(["--chroot", "/"])
        args.extend(["--bindmount", f"{workspace}:{self.mount_path}"])
        args.extend(["--tmpfsmount", "/tmp"])
        args.extend(["--cwd", self.mount_path])

        # Hostname
        args.extend(["--hostname", "sandbox"])

        # nsjail drops all capabilities unless --keep_caps is given
        args.append("--disable_proc")

        # Seccomp policy: block process inspection and server sockets.
        # ERRNO(1) so the process gets EPERM rather than SIGSYS.
        args.extend(
            [
                "--seccomp_string",
                "POLICY policy { ERRNO(1) { ptrace, bind } } USE policy DEFAULT ALLOW",
            ]
        )

        # User/group
        args.extend(["--user", str(SANDBOX_USER_ID)])
        args.extend(["--group", str(SANDBOX_USER_ID)])

        # Environment variables
        for key, value in self.build_sandbox_env(language).items():
            args.extend(["--env", f"{key}={value}"])

        # Separator between nsjail args and the command
        args.append("--")
        args.extend(["/bin/sh", "-c", language.execution_command])
        return args


class LocalRuntime(SandboxRuntime):
    """Runs the program directly in the workspace with NO isolation.

    Meant for development machines and the test-suite. The workspace path
    stands in for the mount path.
    """

    name = "local"

    def build_command(
        self, workspace: Path, language: LanguageConfig, sandbox_name: str
    ) -> List[str]:
        logger.warning(
            "Launching run without isolation",
            runtime=self.name,
            sandbox=sandbox_name,
            language=language.code,
        )
        return ["/bin/sh", "-c", language.execution_command]

    def build_process_env(
        self, workspace: Path, language: LanguageConfig
    ) -> Dict[str, str]:
        # Put the service's own interpreter first so "python3" resolves
        interpreter_dir = os.path.dirname(sys.executable)
        env = {
            "PATH": os.pathsep.join(
                [interpreter_dir, os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")]
            ),
            "HOME": str(workspace),
            "TMPDIR": str(workspace),
            "LANG": "C.UTF-8",
        }
        env.update(language.environment)
        return env


_RUNTIMES = {
    DockerRuntime.name: DockerRuntime,
    NsjailRuntime.name: NsjailRuntime,
    LocalRuntime.name: LocalRuntime,
}


def create_runtime(name: Optional[str] = None) -> SandboxRuntime:
    """Create the runtime selected by name or by settings.sandbox_runtime."""
    runtime_name = name or settings.sandbox_runtime
    try:
        runtime_class = _RUNTIMES[runtime_name]
    except KeyError:
        raise ValueError(
            f"Unknown sandbox runtime {runtime_name!r}; choose from {sorted(_RUNTIMES)}"
        )
    return runtime_class()
