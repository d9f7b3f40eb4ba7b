"""Resource model shared by the planner, the provisioner and the drivers.

A ResourceSpec is the desired state of one resource as declared by the
blueprint. A ResourceState is what a driver reported after creating or
updating it, and is what gets persisted in the state file.

Attributes of a spec may point at another resource's outputs through an
OutputRef, e.g. the instance's resource group comes from the resource group
resource. References are resolved right before the driver is called.
"""

from dataclasses import dataclass, field
from typing import Any

KNOWN_AFTER_APPLY = "(known after apply)"


class UnresolvedReferenceError(KeyError):
    """Raised when an OutputRef points at an output that does not exist yet."""


@dataclass(frozen=True)
class OutputRef:
    """Reference to an output of another resource."""

    address: str
    key: str

    def __str__(self) -> str:
        return f"${{{self.address}.{self.key}}}"


@dataclass
class ResourceSpec:
    """Desired state of a single resource."""

    kind: str
    name: str
    attributes: dict[str, Any]
    depends_on: list[str] = field(default_factory=list)
    immutable: frozenset[str] = frozenset()
    create_before_destroy: bool = False

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}"

    def dependencies(self) -> set[str]:
        """All addresses this resource depends on, explicit or referenced."""
        deps = set(self.depends_on)
        deps.update(ref.address for ref in _iter_refs(self.attributes))
        return deps


@dataclass
class ResourceState:
    """Recorded state of a resource after a driver operation."""

    kind: str
    name: str
    resource_id: str
    attributes: dict[str, Any]
    outputs: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "resource_id": self.resource_id,
            "attributes": self.attributes,
            "outputs": self.outputs,
            "depends_on": sorted(self.depends_on),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceState":
        return cls(
            kind=data["kind"],
            name=data["name"],
            resource_id=data["resource_id"],
            attributes=dict(data.get("attributes", {})),
            outputs=dict(data.get("outputs", {})),
            depends_on=list(data.get("depends_on", [])),
        )


def _iter_refs(value: Any):
    if isinstance(value, OutputRef):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_refs(item)


def resolve_refs(
    value: Any,
    outputs: dict[str, dict[str, Any]],
    pending: set[str] | frozenset[str] = frozenset(),
    unknown: Any = None,
) -> Any:
    """Replace every OutputRef in ``value`` with the referenced output.

    Args:
        value: Attribute value (scalars, lists and dicts are walked)
        outputs: Outputs of recorded resources keyed by address
        pending: Addresses that are about to be created or replaced; their
            outputs are treated as unknown even when a prior value exists
        unknown: Placeholder returned for unknown outputs. When None, an
            unknown output raises UnresolvedReferenceError instead.

    Returns:
        A copy of ``value`` with references resolved

    Raises:
        UnresolvedReferenceError: If an output is unknown and no placeholder
            was given
    """
    if isinstance(value, OutputRef):
        known = value.address not in pending and value.key in outputs.get(value.address, {})
        if known:
            return outputs[value.address][value.key]
        if unknown is not None:
            return unknown
        raise UnresolvedReferenceError(f"Output {value} is not available")
    if isinstance(value, dict):
        return {k: resolve_refs(v, outputs, pending, unknown) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_refs(v, outputs, pending, unknown) for v in value]
    if isinstance(value, tuple):
        return [resolve_refs(v, outputs, pending, unknown) for v in value]
    return value


def changed_attributes(prior: dict[str, Any], desired: dict[str, Any]) -> list[str]:
    """Names of attributes whose values differ between two attribute maps."""
    keys = set(prior) | set(desired)
    return sorted(k for k in keys if prior.get(k) != desired.get(k))


__all__ = [
    "KNOWN_AFTER_APPLY",
    "OutputRef",
    "ResourceSpec",
    "ResourceState",
    "UnresolvedReferenceError",
    "changed_attributes",
    "resolve_refs",
]
