"""Local file resources.

The inventory resource is a file on the operator's machine rendered from the
instance's outputs. It is regenerated whenever the instance address changes.
"""

import logging
import os
from pathlib import Path
from typing import Any

from stackgate.drivers.base import DriverError, ResourceDriver
from stackgate.modules.inventory import (
    InventoryError,
    parse_inventory_hosts,
    render_inventory,
)
from stackgate.resources import ResourceSpec, ResourceState

logger = logging.getLogger(__name__)


class InventoryDriver(ResourceDriver):
    """Write the Ansible inventory file."""

    kind = "inventory"

    def create(self, spec: ResourceSpec, attributes: dict[str, Any]) -> ResourceState:
        path = self._write(attributes)
        logger.info(f"Wrote inventory {path} -> {attributes['host']}")
        return ResourceState(
            kind=spec.kind,
            name=spec.name,
            resource_id=str(path),
            attributes=dict(attributes),
            outputs={"path": str(path), "host": attributes["host"]},
            depends_on=sorted(spec.dependencies()),
        )

    def update(self, prior: ResourceState, attributes: dict[str, Any]) -> ResourceState:
        path = self._write(attributes)
        logger.info(f"Rewrote inventory {path} -> {attributes['host']}")
        return ResourceState(
            kind=prior.kind,
            name=prior.name,
            resource_id=str(path),
            attributes=dict(attributes),
            outputs={"path": str(path), "host": attributes["host"]},
            depends_on=prior.depends_on,
        )

    def delete(self, state: ResourceState) -> None:
        path = Path(state.attributes["path"])
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise DriverError(f"Cannot remove inventory {path}: {e.strerror}") from e

    def read(self, state: ResourceState) -> ResourceState | None:
        path = Path(state.attributes["path"])
        if not path.exists():
            return None
        try:
            hosts = parse_inventory_hosts(path, path.read_text(), state.attributes["group"])
        except (OSError, InventoryError) as e:
            logger.warning(f"Inventory {path} is unreadable, it will be rewritten: {e}")
            hosts = []
        actual = dict(state.attributes)
        actual["host"] = hosts[0] if len(hosts) == 1 else None
        return ResourceState(
            kind=state.kind,
            name=state.name,
            resource_id=state.resource_id,
            attributes=actual,
            outputs=dict(state.outputs),
            depends_on=state.depends_on,
        )

    def _write(self, attributes: dict[str, Any]) -> Path:
        path = Path(attributes["path"])
        try:
            content = render_inventory(
                path,
                host=attributes["host"],
                user=attributes["user"],
                private_key_file=attributes["private_key_file"],
                group=attributes["group"],
            )
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_name(path.name + ".tmp")
            temp_path.write_text(content)
            os.chmod(temp_path, 0o644)
            temp_path.replace(path)
        except InventoryError as e:
            raise DriverError(str(e)) from e
        except OSError as e:
            raise DriverError(f"Cannot write inventory {path}: {e.strerror}") from e
        return path


__all__ = ["InventoryDriver"]
