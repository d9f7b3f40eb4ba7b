"""Driver interface.

A driver knows how to create, update, read and delete one kind of resource.
The provisioner decides *what* to do; drivers only do it.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from stackgate.resources import ResourceSpec, ResourceState


class DriverError(Exception):
    """Raised when a driver operation fails."""

    pass


class ResourceDriver(ABC):
    """Base class for resource drivers."""

    kind: ClassVar[str]

    @abstractmethod
    def create(self, spec: ResourceSpec, attributes: dict[str, Any]) -> ResourceState:
        """Create the resource from resolved attributes."""

    @abstractmethod
    def update(self, prior: ResourceState, attributes: dict[str, Any]) -> ResourceState:
        """Update mutable attributes in place."""

    @abstractmethod
    def delete(self, state: ResourceState) -> None:
        """Delete the resource. Deleting a resource that is already gone succeeds."""

    def read(self, state: ResourceState) -> ResourceState | None:
        """Return the actual state of a recorded resource, or None if it is gone.

        The default trusts the recorded state.
        """
        return state

    def check_replacement(self, state: ResourceState) -> None:
        """Verify a freshly created replacement before its predecessor is destroyed.

        Raises:
            DriverError: If the replacement is not usable
        """


__all__ = ["DriverError", "ResourceDriver"]
