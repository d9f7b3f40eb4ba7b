"""
Prerequisites Checker Module

Verifies the external tools stackgate drives are installed before any cloud
or remote operation starts.
"""

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import ClassVar

logger = logging.getLogger(__name__)


@dataclass
class PrerequisiteResult:
    """Result of prerequisite checks."""

    all_available: bool
    missing: list[str]
    available: list[str]
    missing_optional: list[str]
    platform_name: str


class PrerequisiteError(Exception):
    """Raised when required tools are missing."""

    pass


class PrerequisiteChecker:
    """
    Check required external tools are installed.

    Required tools:
    - az (Azure CLI)
    - ansible-playbook
    - ssh
    - git

    Optional tools (used by local helpers only):
    - docker
    - curl
    """

    REQUIRED_TOOLS: ClassVar[list[str]] = ["az", "ansible-playbook", "ssh", "git"]
    OPTIONAL_TOOLS: ClassVar[list[str]] = ["docker", "curl"]

    INSTALL_HINTS: ClassVar[dict[str, dict[str, str]]] = {
        "az": {
            "macos": "brew install azure-cli",
            "linux": "curl -sL https://aka.ms/InstallAzureCLIDeb | sudo bash",
            "generic": "https://learn.microsoft.com/cli/azure/install-azure-cli",
        },
        "ansible-playbook": {
            "macos": "brew install ansible",
            "linux": "pipx install --include-deps ansible",
            "generic": "https://docs.ansible.com/ansible/latest/installation_guide/",
        },
        "ssh": {
            "macos": "brew install openssh",
            "linux": "sudo apt-get install openssh-client",
            "generic": "https://www.openssh.com/",
        },
        "git": {
            "macos": "brew install git",
            "linux": "sudo apt-get install git",
            "generic": "https://git-scm.com/downloads",
        },
    }

    @classmethod
    def check_tool(cls, tool_name: str) -> bool:
        """True if ``tool_name`` is on PATH."""
        result = shutil.which(tool_name)
        if result:
            logger.debug(f"Found {tool_name} at {result}")
            return True
        logger.debug(f"Tool not found: {tool_name}")
        return False

    @classmethod
    def check_all(cls) -> PrerequisiteResult:
        """
        Check all prerequisites and return a detailed result.

        Example:
            >>> result = PrerequisiteChecker.check_all()
            >>> if not result.all_available:
            ...     print(f"Missing: {result.missing}")
        """
        missing: list[str] = []
        available: list[str] = []
        missing_optional: list[str] = []

        for tool in cls.REQUIRED_TOOLS:
            (available if cls.check_tool(tool) else missing).append(tool)

        for tool in cls.OPTIONAL_TOOLS:
            if cls.check_tool(tool):
                available.append(tool)
            else:
                missing_optional.append(tool)
                logger.warning(f"Optional tool not found: {tool}")

        result = PrerequisiteResult(
            all_available=not missing,
            missing=missing,
            available=available,
            missing_optional=missing_optional,
            platform_name=cls.detect_platform(),
        )

        if result.all_available:
            logger.debug(f"All prerequisites available ({result.platform_name})")
        else:
            logger.error(f"Missing prerequisites: {', '.join(missing)}")

        return result

    @classmethod
    def detect_platform(cls) -> str:
        """Return macos, linux, wsl, windows or unknown."""
        system = platform.system().lower()
        if system == "darwin":
            return "macos"
        if system == "linux":
            return "wsl" if cls._is_wsl() else "linux"
        if system == "windows":
            return "windows"
        return "unknown"

    @classmethod
    def _is_wsl(cls) -> bool:
        try:
            with open("/proc/version") as f:
                version = f.read().lower()
        except OSError as e:
            logger.debug(f"Failed to check for WSL: {e}")
            return False
        return "microsoft" in version or "wsl" in version

    @classmethod
    def format_missing_message(cls, missing: list[str], platform_name: str) -> str:
        """Installation instructions for the missing tools."""
        if not missing:
            return "All prerequisites are installed."

        flavor = {"macos": "macos", "linux": "linux", "wsl": "linux"}.get(platform_name, "generic")
        lines = ["Missing required tools:", ""]
        for tool in missing:
            hint = cls.INSTALL_HINTS.get(tool, {}).get(flavor, "see the tool's documentation")
            lines.append(f"  - {tool}: {hint}")
        lines.extend(["", "After installing, run 'stackgate check-prereqs' again."])
        return "\n".join(lines)

    @classmethod
    def require(cls) -> PrerequisiteResult:
        """
        Check prerequisites, raising if a required tool is missing.

        Raises:
            PrerequisiteError: With installation instructions
        """
        result = cls.check_all()
        if not result.all_available:
            raise PrerequisiteError(cls.format_missing_message(result.missing, result.platform_name))
        return result


__all__ = ["PrerequisiteChecker", "PrerequisiteError", "PrerequisiteResult"]
