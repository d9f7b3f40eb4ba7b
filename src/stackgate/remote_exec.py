"""Remote command execution on the application host.

Used by ``logs``, ``status``, ``validate`` and ``up`` to look at the running
stack over SSH.

Security:
- Command arguments quoted with shlex.quote()
- No shell=True locally
- Timeout enforcement
"""

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass

from stackgate.modules.ssh_connector import SSHConfig, SSHConnector

logger = logging.getLogger(__name__)


class RemoteExecError(Exception):
    """Raised when a remote command cannot be run at all."""

    pass


@dataclass
class RemoteResult:
    """Result from remote command execution."""

    host: str
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration: float = 0.0


class RemoteExecutor:
    """Execute commands on the VM via SSH."""

    @classmethod
    def execute_command(cls, ssh_config: SSHConfig, command: str, timeout: int = 30) -> RemoteResult:
        """Execute a command and capture its output.

        A non-zero remote exit code is reported in the result, not raised.

        Raises:
            RemoteExecError: If ssh times out or cannot be started
        """
        config = SSHConfig(
            host=ssh_config.host,
            user=ssh_config.user,
            key_path=ssh_config.key_path,
            port=ssh_config.port,
            connect_timeout=min(timeout, ssh_config.connect_timeout),
        )
        args = SSHConnector.build_ssh_command(config, command)
        logger.debug(f"Executing on {config.host}: {command}")

        start_time = time.monotonic()
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=timeout, check=False)
        except subprocess.TimeoutExpired as e:
            raise RemoteExecError(f"Command timed out after {timeout}s on {config.host}") from e
        except OSError as e:
            raise RemoteExecError(f"Failed to execute command: {e}") from e

        return RemoteResult(
            host=config.host,
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.returncode,
            duration=time.monotonic() - start_time,
        )


def in_directory(directory: str, command: str) -> str:
    """Prefix ``command`` with a cd into ``directory``, keeping ``~`` expandable."""
    if directory == "~":
        target = "~"
    elif directory.startswith("~/"):
        target = "~/" + shlex.quote(directory[2:])
    else:
        target = shlex.quote(directory)
    return f"cd {target} && {command}"


def compose_logs_command(app_dir: str, lines: int = 50) -> str:
    return in_directory(app_dir, f"docker compose logs --tail={int(lines)}")


def compose_ps_command(app_dir: str, fmt: str | None = None) -> str:
    command = "docker compose ps"
    if fmt:
        command += f" --format {shlex.quote(fmt)}"
    return in_directory(app_dir, command)


__all__ = [
    "RemoteExecError",
    "RemoteExecutor",
    "RemoteResult",
    "compose_logs_command",
    "compose_ps_command",
    "in_directory",
]
