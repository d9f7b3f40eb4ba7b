"""
Ansible Runner Module

Run ``ansible-playbook`` against the generated inventory.

The run is a single subprocess; retries of individual tasks are the
playbook's business and are bounded through the ``task_retries`` extra var.
"""

import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from stackgate.modules.subprocess_helper import SubprocessResult, safe_run

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 40


class ConfigurationManagementError(Exception):
    """Raised when the playbook exits non-zero.

    Attributes:
        returncode: ansible-playbook exit code
        output: Tail of the combined output
    """

    def __init__(self, message: str, returncode: int, output: str = ""):
        self.returncode = returncode
        self.output = output
        full = f"{message} (exit code {returncode})"
        if output:
            full += f"\n{output}"
        super().__init__(full)


@dataclass
class PlaybookRun:
    """Completed playbook invocation."""

    command: list[str]
    returncode: int
    output: str
    duration: float = 0.0


@dataclass
class AnsibleRunner:
    """
    Invoke ansible-playbook.

    Args:
        ansible_dir: Working directory (ansible.cfg and roles are found here)
        inventory_path: Inventory file
        playbook_path: Playbook file
        task_retries: Per-task retry bound, passed as the ``task_retries`` var
        ssh_retries: Connection retries, passed as ANSIBLE_SSH_RETRIES
        extra_vars: Additional variables passed with ``--extra-vars``
        timeout: Hard limit for the whole run in seconds (None = no limit)
    """

    ansible_dir: Path
    inventory_path: Path
    playbook_path: Path
    task_retries: int = 3
    ssh_retries: int = 3
    extra_vars: dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None
    executable: str = "ansible-playbook"

    def build_command(self, extra_vars: dict[str, Any] | None = None) -> list[str]:
        variables = {**self.extra_vars, **(extra_vars or {}), "task_retries": self.task_retries}
        return [
            self.executable,
            "-i",
            str(self.inventory_path),
            str(self.playbook_path),
            "--extra-vars",
            json.dumps(variables, sort_keys=True),
        ]

    def build_environment(self) -> dict[str, str]:
        return {
            "ANSIBLE_HOST_KEY_CHECKING": "False",
            "ANSIBLE_SSH_RETRIES": str(self.ssh_retries),
            "ANSIBLE_FORCE_COLOR": "0",
        }

    def run(self, extra_vars: dict[str, Any] | None = None) -> PlaybookRun:
        """
        Run the playbook to completion.

        Args:
            extra_vars: Per-run variables (e.g. ``force_restart``)

        Returns:
            PlaybookRun on exit code 0

        Raises:
            ConfigurationManagementError: On non-zero exit, timeout or a
                missing ansible-playbook executable
        """
        if shutil.which(self.executable) is None:
            raise ConfigurationManagementError(
                f"{self.executable} not found. Install Ansible and try again.", returncode=127
            )

        command = self.build_command(extra_vars)
        logger.info(f"Running {self.executable} {self.playbook_path.name} against {self.inventory_path}")

        started = time.monotonic()
        result: SubprocessResult = safe_run(
            command,
            cwd=self.ansible_dir,
            timeout=self.timeout,
            env=self.build_environment(),
        )
        duration = time.monotonic() - started

        for line in result.stdout.splitlines():
            logger.debug(line)

        if result.timed_out:
            raise ConfigurationManagementError(
                f"Playbook timed out after {self.timeout:g}s",
                returncode=result.returncode,
                output=result.tail(OUTPUT_TAIL_LINES),
            )
        if result.returncode != 0:
            raise ConfigurationManagementError(
                "Playbook failed",
                returncode=result.returncode,
                output=result.tail(OUTPUT_TAIL_LINES),
            )

        logger.info(f"Playbook completed in {duration:.0f}s")
        return PlaybookRun(command=command, returncode=0, output=result.output, duration=duration)


__all__ = ["AnsibleRunner", "ConfigurationManagementError", "PlaybookRun"]
