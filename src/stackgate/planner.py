"""Plan computation.

Diffs the desired resources against recorded state and produces an ordered
list of changes. Planning never calls a driver; refreshing recorded state
from the cloud happens in the provisioner before the plan is computed.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from stackgate.resources import (
    KNOWN_AFTER_APPLY,
    ResourceSpec,
    ResourceState,
    changed_attributes,
    resolve_refs,
)

logger = logging.getLogger(__name__)


class PlanError(Exception):
    """Raised when the desired resources cannot be ordered."""

    pass


class ChangeAction(Enum):
    """What apply will do to a resource."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


@dataclass
class ResourceChange:
    """Planned change for one resource."""

    address: str
    action: ChangeAction
    spec: ResourceSpec | None = None
    prior: ResourceState | None = None
    changed: list[str] = field(default_factory=list)
    forces_replacement: list[str] = field(default_factory=list)
    deposed: bool = False
    create_before_destroy: bool = False

    def describe(self) -> str:
        """One-line human readable description."""
        label = f"{self.address} (deposed)" if self.deposed else self.address
        if self.action is ChangeAction.REPLACE:
            if self.create_before_destroy:
                how = "create replacement, then destroy"
            else:
                how = "destroy, then create replacement"
            return f"{label}: replace ({how}; forced by {', '.join(self.forces_replacement)})"
        if self.action is ChangeAction.UPDATE:
            return f"{label}: update in-place ({', '.join(self.changed)})"
        return f"{label}: {self.action.value}"


@dataclass
class Plan:
    """Ordered set of changes.

    Creates, updates and replacements come first in dependency order, followed
    by deletions in reverse dependency order.
    """

    changes: list[ResourceChange]

    @property
    def is_empty(self) -> bool:
        return all(c.action is ChangeAction.NOOP for c in self.changes)

    @property
    def actionable(self) -> list[ResourceChange]:
        return [c for c in self.changes if c.action is not ChangeAction.NOOP]

    def get(self, address: str) -> ResourceChange | None:
        for change in self.changes:
            if change.address == address and not change.deposed:
                return change
        return None

    def will_recreate(self, address: str) -> bool:
        """True if apply will produce a new object for ``address``."""
        change = self.get(address)
        return change is not None and change.action in (ChangeAction.CREATE, ChangeAction.REPLACE)

    def counts(self) -> dict[str, int]:
        counts = {"add": 0, "change": 0, "destroy": 0}
        for change in self.changes:
            if change.action is ChangeAction.CREATE:
                counts["add"] += 1
            elif change.action is ChangeAction.UPDATE:
                counts["change"] += 1
            elif change.action is ChangeAction.REPLACE:
                counts["add"] += 1
                counts["destroy"] += 1
            elif change.action is ChangeAction.DELETE:
                counts["destroy"] += 1
        return counts

    def signature(self) -> list[tuple]:
        """What apply would do, comparable between two plans."""
        return [
            (
                c.address,
                c.action,
                c.deposed,
                c.prior.resource_id if c.prior else None,
                tuple(c.changed),
                c.create_before_destroy,
            )
            for c in self.actionable
        ]

    def summary(self) -> str:
        if self.is_empty:
            return "No changes. Infrastructure matches the configuration."
        c = self.counts()
        return f"Plan: {c['add']} to add, {c['change']} to change, {c['destroy']} to destroy."


def dependency_order(specs: Iterable[ResourceSpec]) -> list[ResourceSpec]:
    """Order specs so that every resource comes after its dependencies.

    Ties are broken by declaration order so plans are stable.

    Raises:
        PlanError: On unknown dependencies or cycles
    """
    specs = list(specs)
    by_address = {s.address: s for s in specs}
    if len(by_address) != len(specs):
        raise PlanError("Duplicate resource addresses in configuration")

    for spec in specs:
        missing = spec.dependencies() - by_address.keys()
        if missing:
            raise PlanError(f"{spec.address} depends on unknown resource(s): {sorted(missing)}")

    ordered: list[ResourceSpec] = []
    done: set[str] = set()
    remaining = list(specs)
    while remaining:
        ready = [s for s in remaining if s.dependencies() <= done]
        if not ready:
            cycle = ", ".join(s.address for s in remaining)
            raise PlanError(f"Dependency cycle between: {cycle}")
        for spec in ready:
            ordered.append(spec)
            done.add(spec.address)
        remaining = [s for s in remaining if s.address not in done]
    return ordered


def reverse_dependency_order(states: Iterable[ResourceState]) -> list[ResourceState]:
    """Order recorded states so dependents are destroyed before dependencies."""
    ordered: list[ResourceState] = []
    done: set[str] = set()
    remaining = list(states)
    while remaining:
        # A state can go once nothing remaining depends on it
        blocked = {d for s in remaining for d in s.depends_on}
        ready = [s for s in remaining if s.address not in blocked]
        if not ready:
            # Recorded cycle; fall back to recorded order
            ready = remaining[:1]
        for state in ready:
            ordered.append(state)
            done.add(state.address)
        remaining = [s for s in remaining if s.address not in done]
    return ordered


def _create_before_destroy(ordered: list[ResourceSpec]) -> dict[str, bool]:
    """Whether each resource is replaced create-before-destroy.

    A resource inherits the setting from any resource that depends on it,
    directly or not: the old dependent still uses the old object until its
    own replacement exists.
    """
    dependents: dict[str, set[str]] = {spec.address: set() for spec in ordered}
    for spec in ordered:
        for dependency in spec.dependencies():
            dependents[dependency].add(spec.address)

    result: dict[str, bool] = {}
    for spec in reversed(ordered):
        result[spec.address] = spec.create_before_destroy or any(result[d] for d in dependents[spec.address])
    return result


def compute_plan(
    specs: Iterable[ResourceSpec],
    resources: dict[str, ResourceState],
    deposed: Iterable[ResourceState] = (),
    replace: Iterable[str] = (),
) -> Plan:
    """Diff desired specs against recorded resources.

    Args:
        specs: Desired resources
        resources: Recorded resource states keyed by address
        deposed: Objects left over from an interrupted replacement
        replace: Addresses to replace even if they have no diff

    Returns:
        Plan with one change per desired or recorded resource
    """
    ordered = dependency_order(specs)
    forced = set(replace)
    outputs = {address: state.outputs for address, state in resources.items()}
    pending: set[str] = set()
    changes: list[ResourceChange] = []
    create_before_destroy = _create_before_destroy(ordered)

    for spec in ordered:
        prior = resources.get(spec.address)
        if prior is None:
            changes.append(ResourceChange(spec.address, ChangeAction.CREATE, spec=spec))
            pending.add(spec.address)
            continue

        desired = resolve_refs(spec.attributes, outputs, pending, unknown=KNOWN_AFTER_APPLY)
        changed = changed_attributes(prior.attributes, desired)
        if spec.address in forced:
            pending.add(spec.address)
            changes.append(
                ResourceChange(
                    spec.address,
                    ChangeAction.REPLACE,
                    spec=spec,
                    prior=prior,
                    changed=changed,
                    forces_replacement=["requested"],
                    create_before_destroy=create_before_destroy[spec.address],
                )
            )
            continue
        if not changed:
            changes.append(ResourceChange(spec.address, ChangeAction.NOOP, spec=spec, prior=prior))
            continue

        forces = [name for name in changed if name in spec.immutable]
        action = ChangeAction.REPLACE if forces else ChangeAction.UPDATE
        if action is ChangeAction.REPLACE:
            pending.add(spec.address)
        changes.append(
            ResourceChange(
                spec.address,
                action,
                spec=spec,
                prior=prior,
                changed=changed,
                forces_replacement=forces,
                create_before_destroy=bool(forces) and create_before_destroy[spec.address],
            )
        )

    desired_addresses = {s.address for s in ordered}
    orphans = [s for a, s in resources.items() if a not in desired_addresses]
    for state in reverse_dependency_order(orphans):
        changes.append(ResourceChange(state.address, ChangeAction.DELETE, prior=state))
    for state in deposed:
        changes.append(ResourceChange(state.address, ChangeAction.DELETE, prior=state, deposed=True))

    plan = Plan(changes)
    logger.debug(plan.summary())
    return plan


__all__ = [
    "ChangeAction",
    "Plan",
    "PlanError",
    "ResourceChange",
    "compute_plan",
    "dependency_order",
    "reverse_dependency_order",
]
