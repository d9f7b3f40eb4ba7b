"""
SSH Connector Module

Talk to the provisioned VM over SSH: readiness handshakes, one-shot remote
commands and interactive sessions.

Security Requirements:
- SSH key-based authentication only
- No password authentication (BatchMode)
- Host key checking disabled: every replacement VM has a new host key
- Timeout enforcement
- No credential logging
"""

import logging
import math
import socket
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

READY_TOKEN = "stackgate-ready"


@dataclass
class SSHConfig:
    """SSH connection configuration."""

    host: str
    user: str
    key_path: Path
    port: int = 22
    connect_timeout: int = 10


class SSHConnectionError(Exception):
    """Raised when SSH connection fails."""

    pass


class SSHConnector:
    """
    Manage SSH connections to the VM.

    Security:
    - Key-based authentication only
    - No password prompts
    - Timeout enforcement
    """

    @classmethod
    def build_ssh_command(
        cls,
        config: SSHConfig,
        remote_command: str | None = None,
        tty: bool = False,
    ) -> list[str]:
        """
        Build SSH command with proper flags.

        Args:
            config: SSH configuration
            remote_command: Optional command to execute on remote
            tty: Force TTY allocation (interactive remote commands)

        Returns:
            list: SSH command arguments

        Example:
            >>> config = SSHConfig(host="20.12.34.56", user="azureuser",
            ...                    key_path=Path("~/.ssh/id_ed25519"))
            >>> SSHConnector.build_ssh_command(config)[:3]
            ['ssh', '-i', '/home/me/.ssh/id_ed25519']
        """
        args = [
            "ssh",
            "-i",
            str(config.key_path.expanduser()),
            "-p",
            str(config.port),
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={config.connect_timeout}",
            "-o",
            "LogLevel=ERROR",
        ]
        if tty:
            args.append("-t")

        args.append(f"{config.user}@{config.host}")

        if remote_command:
            args.append(remote_command)

        return args

    @classmethod
    def check_port_open(cls, host: str, port: int, timeout: float = 2.0) -> bool:
        """True if a TCP connection to host:port succeeds within ``timeout``."""
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    @classmethod
    def handshake(cls, config: SSHConfig, timeout: float) -> None:
        """
        Prove the host accepts our key and can run a command.

        Opens the port, authenticates and runs ``echo stackgate-ready``; the
        token must come back on stdout. The whole attempt stays within
        ``timeout`` seconds.

        Raises:
            SSHConnectionError: Describing why the handshake failed
        """
        deadline = time.monotonic() + timeout

        if not cls.check_port_open(config.host, config.port, timeout=timeout):
            raise SSHConnectionError(f"port {config.port} on {config.host} is not accepting connections")

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise SSHConnectionError("no time left for the SSH handshake")

        handshake_config = SSHConfig(
            host=config.host,
            user=config.user,
            key_path=config.key_path,
            port=config.port,
            connect_timeout=max(1, math.floor(remaining)),
        )
        args = cls.build_ssh_command(handshake_config, f"echo {READY_TOKEN}")
        try:
            result = subprocess.run(args, capture_output=True, text=True, errors="replace", timeout=remaining)
        except subprocess.TimeoutExpired as e:
            raise SSHConnectionError(f"SSH handshake timed out after {timeout:g}s") from e
        except FileNotFoundError as e:
            raise SSHConnectionError("ssh client not found") from e
        except OSError as e:
            raise SSHConnectionError(f"cannot run ssh: {e}") from e

        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise SSHConnectionError(f"SSH handshake failed: {detail}")
        if READY_TOKEN not in result.stdout:
            raise SSHConnectionError("SSH handshake did not echo the acknowledgement token")

    @classmethod
    def connect(cls, config: SSHConfig, remote_command: str | None = None) -> int:
        """
        Open an interactive SSH session (blocking until it ends).

        Returns:
            int: SSH exit code (130 if interrupted)

        Raises:
            SSHConnectionError: If ssh cannot be started
        """
        cls._validate_config(config)
        args = cls.build_ssh_command(config, remote_command, tty=remote_command is not None)
        logger.info(f"Connecting to {config.user}@{config.host}...")

        try:
            result = subprocess.run(args)
        except KeyboardInterrupt:
            logger.info("SSH session interrupted by user")
            return 130
        except OSError as e:
            raise SSHConnectionError(f"SSH connection failed: {e}") from e

        if result.returncode != 0:
            logger.warning(f"SSH session ended with code {result.returncode}")
        return result.returncode

    @classmethod
    def _validate_config(cls, config: SSHConfig) -> None:
        """
        Raises:
            SSHConnectionError: If the configuration is unusable
        """
        if not config.host:
            raise SSHConnectionError("SSH host cannot be empty")
        if not config.user:
            raise SSHConnectionError("SSH user cannot be empty")

        key_path = config.key_path.expanduser()
        if not key_path.exists():
            raise SSHConnectionError(f"SSH key not found: {key_path}")

        mode = key_path.stat().st_mode
        if mode & 0o077:
            logger.warning(
                f"SSH key has insecure permissions: {oct(mode & 0o777)}\n"
                f"Expected: 0600 (-rw-------)\n"
                f"File: {key_path}"
            )

        if not 1 <= config.port <= 65535:
            raise SSHConnectionError(f"Invalid SSH port: {config.port}")


__all__ = ["READY_TOKEN", "SSHConfig", "SSHConnectionError", "SSHConnector"]
