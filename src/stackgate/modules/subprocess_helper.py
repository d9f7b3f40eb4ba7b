"""Subprocess execution for long-running tools.

ansible-playbook can print megabytes of task output. Reading both pipes from
background threads keeps a chatty child from blocking on a full pipe buffer
while we wait for it.

Public API:
    SubprocessResult: Result dataclass
    safe_run: Run a command to completion
"""

import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path


@dataclass
class SubprocessResult:
    """Result of subprocess execution."""

    returncode: int
    stdout: str
    stderr: str
    timed_out: bool

    @property
    def output(self) -> str:
        """stdout followed by stderr."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr

    def tail(self, lines: int = 40) -> str:
        """Last ``lines`` lines of the combined output."""
        return "\n".join(self.output.rstrip().splitlines()[-lines:])


def safe_run(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> SubprocessResult:
    """
    Run ``cmd`` and collect its output.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        timeout: Timeout in seconds (None = wait forever)
        env: Extra environment variables, merged over os.environ

    Returns:
        SubprocessResult. A missing executable yields returncode 127.
    """
    merged_env = {**os.environ, **env} if env else None
    try:
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=merged_env,
        )
    except FileNotFoundError:
        return SubprocessResult(
            returncode=127,
            stdout="",
            stderr=f"Command not found: {cmd[0] if cmd else 'unknown'}",
            timed_out=False,
        )
    except OSError as e:
        return SubprocessResult(returncode=1, stdout="", stderr=f"Error executing command: {e!s}", timed_out=False)

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    def drain(pipe, chunks):
        for chunk in iter(lambda: pipe.read(8192), b""):
            chunks.append(chunk)

    readers = [
        threading.Thread(target=drain, args=(process.stdout, stdout_chunks), daemon=True),
        threading.Thread(target=drain, args=(process.stderr, stderr_chunks), daemon=True),
    ]
    for reader in readers:
        reader.start()

    timed_out = False
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    for reader in readers:
        reader.join(timeout=5)

    return SubprocessResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
        stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace"),
        timed_out=timed_out,
    )


__all__ = ["SubprocessResult", "safe_run"]
