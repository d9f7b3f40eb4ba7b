"""Azure CLI subprocess execution with retry logic.

Usage:
    from stackgate.azure_cli_executor import run_az_command, run_az_json

    result = run_az_command(["az", "group", "show", "--name", "rg"], check=False)
    vm = run_az_json(["az", "vm", "create", ...], timeout=900)
"""

import json
import logging
import subprocess
from typing import Any

from stackgate.retry_config import get_retry_config
from stackgate.retry_handler import retry_with_exponential_backoff

logger = logging.getLogger(__name__)

# Fragments az prints when a resource does not exist
_NOT_FOUND_MARKERS = (
    "ResourceNotFound",
    "ResourceGroupNotFound",
    "NotFound",
    "was not found",
    "could not be found",
)


def run_az_command(
    cmd: list[str],
    *,
    timeout: int = 60,
    max_attempts: int | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute an Azure CLI command, retrying transient failures.

    Args:
        cmd: Command list starting with "az"
        timeout: Subprocess timeout in seconds
        max_attempts: Number of attempts (default: from RetryConfig)
        check: Raise CalledProcessError on non-zero exit. Non-zero exits are
            only retried when check is True.

    Returns:
        subprocess.CompletedProcess with stdout/stderr

    Raises:
        subprocess.CalledProcessError: After retries are exhausted (check=True)
        subprocess.TimeoutExpired: After retries are exhausted
        FileNotFoundError: If the az executable is not installed
    """
    config = get_retry_config()
    attempts = max_attempts or config.az_max_attempts

    @retry_with_exponential_backoff(
        max_attempts=attempts,
        initial_delay=config.az_initial_delay,
        max_delay=config.az_max_delay,
        jitter=config.jitter_enabled,
        retryable_exceptions=(subprocess.CalledProcessError, subprocess.TimeoutExpired),
    )
    def _run() -> subprocess.CompletedProcess[str]:
        logger.debug(f"Running: {' '.join(cmd[:4])} ...")
        return subprocess.run(cmd, capture_output=True, text=True, check=check, timeout=timeout)

    return _run()


def run_az_json(cmd: list[str], *, timeout: int = 60, max_attempts: int | None = None) -> Any:
    """Run an az command with ``--output json`` and parse stdout.

    Returns:
        Parsed JSON, or None when az printed nothing

    Raises:
        subprocess.CalledProcessError: On non-zero exit after retries
        ValueError: If stdout is not valid JSON
    """
    if "--output" not in cmd and "-o" not in cmd:
        cmd = [*cmd, "--output", "json"]
    result = run_az_command(cmd, timeout=timeout, max_attempts=max_attempts, check=True)
    output = result.stdout.strip()
    return json.loads(output) if output else None


def is_not_found(stderr: str | None) -> bool:
    """True if az stderr reports a missing resource."""
    return bool(stderr) and any(marker in stderr for marker in _NOT_FOUND_MARKERS)


__all__ = ["is_not_found", "run_az_command", "run_az_json"]
