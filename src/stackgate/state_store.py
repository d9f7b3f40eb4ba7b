"""Persisted state.

The state file records every resource the provisioner created, objects left
behind by an interrupted replacement, and the last successful convergence
run. It is the only shared mutable resource in stackgate; a single actor reads
and writes it per invocation.

Security:
- State file permissions: 0600 (owner read/write only)
- Atomic writes (temporary file + rename)
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from stackgate.convergence import ConvergenceRecord
from stackgate.resources import ResourceState

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class StateError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


@dataclass
class StateRecord:
    """Everything stackgate remembers between invocations."""

    resources: dict[str, ResourceState] = field(default_factory=dict)
    deposed: list[ResourceState] = field(default_factory=list)
    convergence: ConvergenceRecord | None = None
    serial: int = 0

    def outputs(self) -> dict[str, dict[str, Any]]:
        """Outputs of every recorded resource keyed by address."""
        return {address: state.outputs for address, state in self.resources.items()}

    @property
    def is_empty(self) -> bool:
        return not self.resources and not self.deposed

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_FORMAT_VERSION,
            "serial": self.serial,
            "resources": [s.to_dict() for s in self.resources.values()],
            "deposed": [s.to_dict() for s in self.deposed],
            "convergence": self.convergence.to_dict() if self.convergence else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StateRecord":
        version = data.get("version", STATE_FORMAT_VERSION)
        if version != STATE_FORMAT_VERSION:
            raise StateError(f"Unsupported state format version: {version}")
        resources = [ResourceState.from_dict(r) for r in data.get("resources", [])]
        convergence = data.get("convergence")
        return cls(
            resources={r.address: r for r in resources},
            deposed=[ResourceState.from_dict(r) for r in data.get("deposed", [])],
            convergence=ConvergenceRecord.from_dict(convergence) if convergence else None,
            serial=int(data.get("serial", 0)),
        )


class StateStore:
    """Load and save the state file."""

    STATE_FILE_NAME = "state.json"

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / self.STATE_FILE_NAME

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> StateRecord:
        """Load state, returning an empty record if no state file exists.

        Raises:
            StateError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}, starting empty")
            return StateRecord()

        try:
            with open(self.path) as f:
                data = json.load(f)
            return StateRecord.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StateError(f"Failed to load state from {self.path}: {e}") from e

    def save(self, record: StateRecord) -> None:
        """Write state atomically, bumping its serial.

        Raises:
            StateError: If writing fails
        """
        temp_path = self.path.with_suffix(".tmp")
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self.state_dir, 0o700)

            record.serial += 1
            with open(temp_path, "w") as f:
                json.dump(record.to_dict(), f, indent=2, sort_keys=True)
                f.write("\n")
            os.chmod(temp_path, 0o600)
            temp_path.replace(self.path)

            logger.debug(f"Saved state serial {record.serial} to {self.path}")
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StateError(f"Failed to save state: {e}") from e

    def backup(self, backup_dir: Path) -> Path:
        """Copy the state file to a timestamped file in ``backup_dir``.

        Raises:
            StateError: If there is no state to back up or copying fails
        """
        if not self.path.exists():
            raise StateError(f"No state file to back up at {self.path}")

        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        target = Path(backup_dir) / f"state-{stamp}.json"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self.path, target)
        except OSError as e:
            raise StateError(f"Failed to back up state: {e}") from e
        return target

    def clean_temporary_files(self) -> list[Path]:
        """Remove leftover temporary files from interrupted writes."""
        removed = []
        if self.state_dir.exists():
            for path in self.state_dir.glob("*.tmp"):
                path.unlink()
                removed.append(path)
        return removed


__all__ = ["StateError", "StateRecord", "StateStore"]
