"""Deployment pipeline: provision, then converge.

The two stages are strictly ordered. Convergence only ever sees the state the
provisioner saved, and its own record is written back only after a fully
successful pass.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from stackgate.blueprint import INSTANCE, build_resources
from stackgate.config_manager import DesiredStateConfig
from stackgate.convergence import ConvergenceError, ConvergenceTrigger, TriggerDecision
from stackgate.drivers import default_drivers
from stackgate.drivers.base import ResourceDriver
from stackgate.modules.ansible_runner import PlaybookRun
from stackgate.modules.readiness import ProbeResult
from stackgate.planner import Plan, ResourceChange, compute_plan
from stackgate.provisioner import ApplyResult, Provisioner
from stackgate.resources import ResourceSpec
from stackgate.state_store import StateRecord, StateStore

logger = logging.getLogger(__name__)


@dataclass
class ConvergenceOutcome:
    decision: TriggerDecision
    probe: ProbeResult | None = None
    playbook: PlaybookRun | None = None

    @property
    def ran(self) -> bool:
        return self.playbook is not None


@dataclass
class DeploymentResult:
    """Result of ``apply``: what was provisioned and whether the playbook ran."""

    apply: ApplyResult | None
    convergence: ConvergenceOutcome | None = None


class DeploymentPipeline:
    """
    Wire the provisioner and the convergence trigger together.

    Args:
        config: Loaded configuration
        drivers: Driver registry (Azure CLI drivers by default)
        trigger: Convergence trigger (built from config by default)
        store: State store (``<state_dir>/state.json`` by default)
        specs: Resource specs (built from config by default)
        on_change: Callback receiving each resource change as it starts
    """

    def __init__(
        self,
        config: DesiredStateConfig,
        drivers: dict[str, ResourceDriver] | None = None,
        trigger: ConvergenceTrigger | None = None,
        store: StateStore | None = None,
        specs: list[ResourceSpec] | None = None,
        on_change: Callable[[ResourceChange], None] | None = None,
    ):
        self.config = config
        self.store = store or StateStore(config.state_dir)
        self.specs = specs if specs is not None else build_resources(config)
        self.provisioner = Provisioner(self.specs, drivers or default_drivers(), self.store, on_change)
        self.trigger = trigger or ConvergenceTrigger(config)

    def plan(self, refresh: bool = True, replace: tuple[str, ...] = ()) -> tuple[Plan, list[str]]:
        """
        Compute the plan and predict whether convergence would run.

        Returns:
            (plan, reasons the playbook would run; empty if it would not)
        """
        record = self.provisioner.load(refresh=refresh)
        plan = compute_plan(self.specs, record.resources, record.deposed, replace=replace)
        return plan, self._predict_convergence(plan, record)

    def apply(
        self,
        refresh: bool = True,
        replace: tuple[str, ...] = (),
        converge: bool = True,
        force: bool = False,
        extra_vars: dict[str, Any] | None = None,
        plan: Plan | None = None,
    ) -> DeploymentResult:
        """
        Provision, then converge if the guard fires.

        Args:
            plan: Plan the operator confirmed; provisioning aborts if it is stale

        Raises:
            PlanError: If ``plan`` no longer matches the infrastructure
            ProvisioningError: If provisioning fails (convergence is skipped)
            ConvergenceError: If the inventory does not match the instance
            UnreachableTargetError: If the instance never became reachable
            ConfigurationManagementError: If the playbook failed
        """
        applied = self.provisioner.apply(refresh=refresh, replace=replace, confirmed=plan)
        result = DeploymentResult(apply=applied)
        if converge:
            result.convergence = self._converge(applied.record, force, extra_vars)
        return result

    def converge(self, force: bool = False, extra_vars: dict[str, Any] | None = None) -> ConvergenceOutcome:
        """Run only the convergence stage against recorded state."""
        record = self.store.load()
        return self._converge(record, force, extra_vars)

    def destroy(self) -> list[str]:
        return self.provisioner.destroy()

    def _converge(
        self,
        record: StateRecord,
        force: bool,
        extra_vars: dict[str, Any] | None,
    ) -> ConvergenceOutcome:
        decision = self.trigger.evaluate(record.resources, record.convergence, force=force)
        if not decision.should_trigger:
            logger.info("Configuration is up to date; playbook not run")
            return ConvergenceOutcome(decision=decision)

        run_vars = dict(extra_vars or {})
        if force:
            run_vars.setdefault("force_restart", True)

        new_record, probe, playbook = self.trigger.run(record.resources, decision, run_vars)
        record.convergence = new_record
        self.store.save(record)
        return ConvergenceOutcome(decision=decision, probe=probe, playbook=playbook)

    def _predict_convergence(self, plan: Plan, record: StateRecord) -> list[str]:
        if plan.will_recreate(INSTANCE):
            verb = "created" if INSTANCE not in record.resources else "replaced"
            return [f"instance will be {verb}"]
        if INSTANCE not in record.resources:
            return []
        try:
            decision = self.trigger.evaluate(record.resources, record.convergence)
        except ConvergenceError as e:
            logger.warning(f"Convergence cannot run: {e}")
            return []
        return decision.reasons


__all__ = ["ConvergenceOutcome", "DeploymentPipeline", "DeploymentResult"]
