"""Resource drivers.

``default_drivers()`` returns the registry the CLI uses: Azure CLI drivers for
cloud resources and a local driver for the inventory file.
"""

from stackgate.drivers.azure import (
    InstanceDriver,
    NetworkRulesDriver,
    ResourceGroupDriver,
    SSHKeyDriver,
)
from stackgate.drivers.base import DriverError, ResourceDriver
from stackgate.drivers.local import InventoryDriver


def default_drivers() -> dict[str, ResourceDriver]:
    """Driver registry keyed by resource kind."""
    drivers: list[ResourceDriver] = [
        ResourceGroupDriver(),
        SSHKeyDriver(),
        NetworkRulesDriver(),
        InstanceDriver(),
        InventoryDriver(),
    ]
    return {driver.kind: driver for driver in drivers}


__all__ = [
    "DriverError",
    "InstanceDriver",
    "InventoryDriver",
    "NetworkRulesDriver",
    "ResourceDriver",
    "ResourceGroupDriver",
    "SSHKeyDriver",
    "default_drivers",
]
