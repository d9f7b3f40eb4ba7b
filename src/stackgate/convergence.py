"""Convergence trigger.

Runs the playbook against the instance, but only when something it depends
on has changed since the last successful run:

- there is no record of a successful run,
- the instance was replaced (its identifier changed), or
- a tracked file of the configuration payload changed, appeared or vanished.

Deciding is a pure function (``evaluate_trigger``) of the previous record and
the current inputs. Running is strictly ordered: inventory check, readiness
probe, then the playbook. The new record is handed back to the caller, who
persists it only when the whole pass succeeded.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from stackgate.blueprint import INSTANCE, INVENTORY
from stackgate.config_manager import DesiredStateConfig
from stackgate.modules.ansible_runner import AnsibleRunner, PlaybookRun
from stackgate.modules.fingerprint import compute_fingerprints
from stackgate.modules.inventory import InventoryError, read_inventory_hosts
from stackgate.modules.readiness import Probe, ProbeResult, ssh_probe, wait_for_ready
from stackgate.resources import ResourceState

logger = logging.getLogger(__name__)


class ConvergenceError(Exception):
    """Raised when convergence cannot safely start."""

    pass


@dataclass
class ConvergenceRecord:
    """Inputs of the last successful convergence run."""

    instance_id: str
    address: str
    fingerprints: dict[str, str] = field(default_factory=dict)
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "address": self.address,
            "fingerprints": dict(sorted(self.fingerprints.items())),
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConvergenceRecord":
        return cls(
            instance_id=data["instance_id"],
            address=data["address"],
            fingerprints=dict(data.get("fingerprints", {})),
            completed_at=data.get("completed_at"),
        )


@dataclass
class TriggerDecision:
    """Whether to converge, why, and the record a successful run would leave."""

    should_trigger: bool
    reasons: list[str]
    record: ConvergenceRecord


def evaluate_trigger(
    previous: ConvergenceRecord | None,
    instance_id: str,
    address: str,
    fingerprints: dict[str, str],
    force: bool = False,
) -> TriggerDecision:
    """
    Decide whether the playbook has to run.

    Args:
        previous: Record of the last successful run (None if never)
        instance_id: Identifier of the current instance
        address: Public address of the current instance
        fingerprints: Current payload fingerprints
        force: Run regardless of changes

    Returns:
        TriggerDecision; ``reasons`` is empty iff should_trigger is False
    """
    reasons = []
    if force:
        reasons.append("forced")

    if previous is None:
        reasons.append("no previous successful run")
    else:
        if previous.instance_id != instance_id:
            reasons.append(f"instance replaced ({previous.instance_id} -> {instance_id})")

        before, after = previous.fingerprints, fingerprints
        for path in sorted(after.keys() - before.keys()):
            reasons.append(f"added {path}")
        for path in sorted(before.keys() - after.keys()):
            reasons.append(f"removed {path}")
        for path in sorted(before.keys() & after.keys()):
            if before[path] != after[path]:
                reasons.append(f"modified {path}")

    record = ConvergenceRecord(instance_id=instance_id, address=address, fingerprints=dict(fingerprints))
    return TriggerDecision(should_trigger=bool(reasons), reasons=reasons, record=record)


def current_instance(resources: dict[str, ResourceState]) -> tuple[ResourceState, str]:
    """
    The recorded instance and its public address.

    Raises:
        ConvergenceError: If there is no instance or it has no public address
    """
    instance = resources.get(INSTANCE)
    if instance is None:
        raise ConvergenceError("No instance has been provisioned. Run 'stackgate apply' first.")
    address = instance.outputs.get("public_ip")
    if not address:
        raise ConvergenceError(f"Instance {instance.resource_id} has no public address")
    return instance, address


class ConvergenceTrigger:
    """
    Evaluate and run the convergence stage.

    Args:
        config: Loaded configuration
        runner: Playbook runner (built from config if omitted)
        probe_factory: Builds a readiness probe for (host, user, key, port)
        sleep: Sleep function for the readiness wait
        clock: Monotonic clock for the readiness wait
    """

    def __init__(
        self,
        config: DesiredStateConfig,
        runner: AnsibleRunner | None = None,
        probe_factory: Callable[[str, str, Path, int], Probe] = ssh_probe,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.runner = runner or AnsibleRunner(
            ansible_dir=config.ansible_dir,
            inventory_path=config.inventory_path,
            playbook_path=config.playbook_path,
            task_retries=config.convergence.task_retries,
            extra_vars=_default_extra_vars(config),
        )
        self.probe_factory = probe_factory
        self.sleep = sleep
        self.clock = clock

    def fingerprints(self) -> dict[str, str]:
        return compute_fingerprints(
            self.config.ansible_dir,
            self.config.convergence.playbook,
            self.config.convergence.roles_dirs,
        )

    def evaluate(
        self,
        resources: dict[str, ResourceState],
        previous: ConvergenceRecord | None,
        force: bool = False,
    ) -> TriggerDecision:
        """Evaluate the guard against recorded resources.

        Raises:
            ConvergenceError: If there is no addressable instance
        """
        instance, address = current_instance(resources)
        return evaluate_trigger(previous, instance.resource_id, address, self.fingerprints(), force=force)

    def verify_inventory(self, resources: dict[str, ResourceState], address: str) -> None:
        """
        Check the inventory points at ``address`` before the playbook runs.

        Raises:
            ConvergenceError: If the inventory is missing or stale
        """
        inventory = resources.get(INVENTORY)
        recorded = inventory.outputs.get("host") if inventory else None
        if recorded != address:
            raise ConvergenceError(
                f"Inventory was generated for {recorded or 'no host'}, but the instance is at {address}. "
                "Run 'stackgate apply' to regenerate it."
            )

        path = self.config.inventory_path
        try:
            hosts = read_inventory_hosts(path)
        except InventoryError as e:
            raise ConvergenceError(str(e)) from e
        if address not in hosts:
            raise ConvergenceError(f"Inventory {path} does not list {address} (found: {hosts or 'none'})")

    def run(
        self,
        resources: dict[str, ResourceState],
        decision: TriggerDecision,
        extra_vars: dict[str, Any] | None = None,
    ) -> tuple[ConvergenceRecord, ProbeResult, PlaybookRun]:
        """
        Converge the instance.

        Returns:
            (record to persist, probe result, playbook run)

        Raises:
            ConvergenceError: If the inventory does not match the instance
            UnreachableTargetError: If the instance never became reachable
            ConfigurationManagementError: If the playbook failed
        """
        address = decision.record.address
        logger.info(f"Converging {address}: {', '.join(decision.reasons) or 'requested'}")

        self.verify_inventory(resources, address)

        probe = self.probe_factory(
            address,
            self.config.cloud.admin_username,
            self.config.private_key_path,
            self.config.ssh.port,
        )
        probe_result = wait_for_ready(address, probe, self.config.readiness, sleep=self.sleep, clock=self.clock)

        playbook_run = self.runner.run(extra_vars)

        record = replace(decision.record, completed_at=datetime.now(UTC).isoformat(timespec="seconds"))
        return record, probe_result, playbook_run


def _default_extra_vars(config: DesiredStateConfig) -> dict[str, Any]:
    """Variables every run gets: application settings, then user extra_vars."""
    app = config.application
    variables: dict[str, Any] = {}
    if app.domain_name:
        variables["domain_name"] = app.domain_name
    if app.email:
        variables["email"] = app.email
    if app.repo:
        variables["github_repo"] = app.repo
    if app.app_dir:
        variables["app_dir"] = app.app_dir
    variables.update(config.convergence.extra_vars)
    return variables


__all__ = [
    "ConvergenceError",
    "ConvergenceRecord",
    "ConvergenceTrigger",
    "TriggerDecision",
    "current_instance",
    "evaluate_trigger",
]
