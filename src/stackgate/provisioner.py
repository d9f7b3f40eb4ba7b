"""Provisioner - apply a plan through the resource drivers.

Responsibilities:
- Refresh recorded state from the drivers before planning
- Apply changes in dependency order, persisting state after every operation
- Create-before-destroy replacement for resources that ask for it
- Destroy everything in reverse dependency order

There is no rollback. When an operation fails, state for the operations that
already succeeded is on disk and the next apply picks up from there.
"""

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field

from stackgate.drivers.base import DriverError, ResourceDriver
from stackgate.planner import (
    ChangeAction,
    Plan,
    PlanError,
    ResourceChange,
    compute_plan,
    reverse_dependency_order,
)
from stackgate.resources import (
    ResourceSpec,
    ResourceState,
    UnresolvedReferenceError,
    resolve_refs,
)
from stackgate.state_store import StateRecord, StateStore

logger = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """Raised when a resource operation fails.

    Attributes:
        address: Resource address, e.g. ``instance.app_server``
        action: Operation that failed (create, update, replace, delete, read)
    """

    def __init__(self, address: str, action: str, message: str):
        self.address = address
        self.action = action
        super().__init__(f"{action} {address} failed: {message}")


@dataclass
class ApplyResult:
    """What an apply did."""

    plan: Plan
    record: StateRecord
    applied: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.applied)


class Provisioner:
    """Drive resources from recorded state to the desired specs.

    Args:
        specs: Desired resources
        drivers: Driver registry keyed by resource kind
        store: State file
        on_change: Optional callback receiving each change as it starts
    """

    def __init__(
        self,
        specs: list[ResourceSpec],
        drivers: dict[str, ResourceDriver],
        store: StateStore,
        on_change: Callable[[ResourceChange], None] | None = None,
    ):
        self.specs = specs
        self.drivers = drivers
        self.store = store
        self.on_change = on_change

    def load(self, refresh: bool = True) -> StateRecord:
        """Load state, optionally refreshed from the drivers (not saved)."""
        record = self.store.load()
        if refresh:
            self.refresh(record)
        return record

    def refresh(self, record: StateRecord) -> None:
        """Replace recorded states with what the drivers report.

        Resources that no longer exist are dropped from the record so the
        next plan recreates them.

        Raises:
            ProvisioningError: If a driver cannot read a resource
        """
        for address, state in list(record.resources.items()):
            actual = self._call(address, "read", lambda s=state: self._driver(s.kind, address).read(s))
            if actual is None:
                logger.warning(f"{address} no longer exists and will be recreated")
                del record.resources[address]
            else:
                record.resources[address] = actual

        kept = []
        for state in record.deposed:
            address = f"{state.address} (deposed)"
            actual = self._call(address, "read", lambda s=state: self._driver(s.kind, address).read(s))
            if actual is not None:
                kept.append(actual)
        record.deposed = kept

    def plan(self, refresh: bool = True, replace: tuple[str, ...] = ()) -> Plan:
        """Compute the plan without changing anything."""
        record = self.load(refresh=refresh)
        return compute_plan(self.specs, record.resources, record.deposed, replace=replace)

    def apply(
        self,
        refresh: bool = True,
        replace: tuple[str, ...] = (),
        confirmed: Plan | None = None,
    ) -> ApplyResult:
        """
        Plan and apply.

        Args:
            refresh: Read actual state from the drivers first
            replace: Addresses to replace even without a diff
            confirmed: Plan the operator approved; apply aborts if the
                fresh plan differs from it

        Returns:
            ApplyResult with the plan and the saved record

        Raises:
            ProvisioningError: On the first failing operation
            PlanError: If the specs cannot be ordered, or the confirmed plan is stale
        """
        record = self.load(refresh=refresh)
        plan = compute_plan(self.specs, record.resources, record.deposed, replace=replace)
        if confirmed is not None and plan.signature() != confirmed.signature():
            raise PlanError(
                "Plan is stale: infrastructure changed since it was shown. Run the command again to review it."
            )
        result = ApplyResult(plan=plan, record=record)

        if plan.is_empty:
            logger.info(plan.summary())
            return result

        # Destroy-first replacements lose their old objects up front,
        # dependents before dependencies
        for change in reversed(plan.actionable):
            if change.action is ChangeAction.REPLACE and not change.create_before_destroy:
                self._delete_current(change.address, change.prior, record, "replace")

        superseded: list[ResourceState] = []
        deposed: list[ResourceChange] = []
        for change in plan.actionable:
            if change.deposed:
                deposed.append(change)
                continue
            if self.on_change:
                self.on_change(change)
            self._apply_change(change, record, superseded)
            result.applied.append(change.address)

        # Old objects go last, after every dependent has been pointed at its
        # replacement, and dependents before dependencies
        for state in reversed(superseded):
            self._delete_deposed(state, record)
        for state in reverse_dependency_order([c.prior for c in deposed]):
            if self.on_change:
                self.on_change(ResourceChange(state.address, ChangeAction.DELETE, prior=state, deposed=True))
            self._delete_deposed(state, record)
            result.applied.append(f"{state.address} (deposed)")

        logger.info(f"Apply complete. {plan.summary()[len('Plan: '):]}")
        return result

    def destroy(self) -> list[str]:
        """
        Delete every recorded resource in reverse dependency order.

        Returns:
            list: Addresses destroyed

        Raises:
            ProvisioningError: On the first failing delete
        """
        record = self.store.load()
        destroyed = []

        for state in list(record.deposed):
            self._delete_deposed(state, record)
            destroyed.append(f"{state.address} (deposed)")

        for state in reverse_dependency_order(list(record.resources.values())):
            if self.on_change:
                self.on_change(ResourceChange(state.address, ChangeAction.DELETE, prior=state))
            self._call(state.address, "delete", lambda s=state: self._driver(s.kind, s.address).delete(s))
            del record.resources[state.address]
            self.store.save(record)
            destroyed.append(state.address)

        if record.convergence is not None:
            record.convergence = None
            self.store.save(record)

        return destroyed

    def _apply_change(self, change: ResourceChange, record: StateRecord, superseded: list[ResourceState]) -> None:
        address = change.address

        if change.action is ChangeAction.DELETE:
            self._delete_current(address, change.prior, record, "delete")
            return

        spec = change.spec
        driver = self._driver(spec.kind, address)
        attributes = self._call(address, change.action.value, lambda: resolve_refs(spec.attributes, record.outputs()))

        if change.action is ChangeAction.CREATE:
            record.resources[address] = self._call(address, "create", lambda: driver.create(spec, attributes))
            self.store.save(record)

        elif change.action is ChangeAction.UPDATE:
            prior = record.resources[address]
            record.resources[address] = self._call(address, "update", lambda: driver.update(prior, attributes))
            self.store.save(record)

        elif change.action is ChangeAction.REPLACE and change.create_before_destroy:
            prior = record.resources[address]
            replacement = self._call(address, "replace", lambda: driver.create(spec, attributes))
            try:
                driver.check_replacement(replacement)
            except DriverError as e:
                # Keep the working object; the half-made one is cleaned up later
                record.deposed.append(replacement)
                self.store.save(record)
                raise ProvisioningError(address, "replace", str(e)) from e

            record.resources[address] = replacement
            record.deposed.append(prior)
            self.store.save(record)
            superseded.append(prior)
            logger.info(f"{address} replaced: {prior.resource_id} -> {replacement.resource_id}")

        elif change.action is ChangeAction.REPLACE:
            # The old object was deleted before any create
            record.resources[address] = self._call(address, "replace", lambda: driver.create(spec, attributes))
            self.store.save(record)

    def _delete_current(self, address: str, state: ResourceState, record: StateRecord, action: str) -> None:
        self._call(address, action, lambda: self._driver(state.kind, address).delete(state))
        del record.resources[address]
        self.store.save(record)

    def _delete_deposed(self, state: ResourceState, record: StateRecord) -> None:
        address = f"{state.address} (deposed)"
        self._call(address, "delete", lambda: self._driver(state.kind, address).delete(state))
        record.deposed = [d for d in record.deposed if d.resource_id != state.resource_id]
        self.store.save(record)

    def _driver(self, kind: str, address: str) -> ResourceDriver:
        try:
            return self.drivers[kind]
        except KeyError:
            raise ProvisioningError(address, "lookup", f"no driver for resource kind {kind!r}") from None

    @staticmethod
    def _call(address: str, action: str, operation):
        """Run a driver operation, turning its failures into ProvisioningError."""
        try:
            return operation()
        except ProvisioningError:
            raise
        except DriverError as e:
            raise ProvisioningError(address, action, str(e)) from e
        except UnresolvedReferenceError as e:
            raise ProvisioningError(address, action, str(e.args[0]) if e.args else str(e)) from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() if isinstance(e.stderr, str) else ""
            raise ProvisioningError(address, action, detail or f"exit code {e.returncode}") from e


__all__ = ["ApplyResult", "ProvisioningError", "Provisioner"]
