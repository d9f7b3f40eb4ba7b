"""Shared helpers for stackgate commands."""

import contextlib
import logging
import sys
from collections.abc import Iterator
from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from stackgate.blueprint import INSTANCE
from stackgate.config_manager import ConfigError, ConfigManager, DesiredStateConfig
from stackgate.convergence import ConvergenceError
from stackgate.modules.ansible_runner import ConfigurationManagementError
from stackgate.modules.prerequisites import PrerequisiteError
from stackgate.modules.readiness import UnreachableTargetError
from stackgate.modules.ssh_connector import SSHConfig, SSHConnectionError
from stackgate.planner import ChangeAction, Plan, PlanError
from stackgate.provisioner import ProvisioningError
from stackgate.remote_exec import RemoteExecError
from stackgate.state_store import StateError, StateRecord

logger = logging.getLogger(__name__)

console = Console()

STACKGATE_ERRORS = (
    ConfigError,
    StateError,
    PlanError,
    ProvisioningError,
    ConvergenceError,
    UnreachableTargetError,
    ConfigurationManagementError,
    PrerequisiteError,
    SSHConnectionError,
    RemoteExecError,
)

_ACTION_STYLES = {
    ChangeAction.CREATE: ("+", "green"),
    ChangeAction.UPDATE: ("~", "yellow"),
    ChangeAction.REPLACE: ("-/+", "magenta"),
    ChangeAction.DELETE: ("-", "red"),
}


@contextlib.contextmanager
def handle_errors() -> Iterator[None]:
    """Print stackgate errors as ``Error: ...`` and exit 1 (130 on Ctrl+C)."""
    try:
        yield
    except STACKGATE_ERRORS as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(130)


def load_config(config: str | None, check_files: bool = True) -> DesiredStateConfig:
    return ConfigManager.load_config(config, check_files=check_files)


def parse_extra_vars(values: tuple[str, ...]) -> dict[str, Any]:
    """Parse ``KEY=VALUE`` pairs; values are typed as YAML scalars.

    Raises:
        click.BadParameter: On a malformed pair
    """
    result: dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}", param_hint="--extra-var")
        try:
            result[key] = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            result[key] = raw
    return result


def render_plan(plan: Plan, convergence_reasons: list[str]) -> None:
    """Print the plan as a table, followed by the convergence prediction."""
    if plan.is_empty:
        click.echo(plan.summary())
    else:
        table = Table(title="Planned changes", show_header=True, header_style="bold")
        table.add_column("", no_wrap=True)
        table.add_column("Resource", style="cyan")
        table.add_column("Action")
        table.add_column("Details")

        for change in plan.actionable:
            symbol, color = _ACTION_STYLES[change.action]
            label = f"{change.address} (deposed)" if change.deposed else change.address
            if change.action is ChangeAction.REPLACE:
                details = f"forced by {', '.join(change.forces_replacement)}"
            elif change.action is ChangeAction.UPDATE:
                details = ", ".join(change.changed)
            else:
                details = ""
            table.add_row(f"[{color}]{symbol}[/{color}]", label, change.action.value, details)

        console.print(table)
        click.echo(plan.summary())

    if convergence_reasons:
        click.echo(f"Playbook will run: {'; '.join(convergence_reasons)}")
    else:
        click.echo("Playbook will not run (configuration unchanged).")


def require_instance(record: StateRecord) -> tuple[str, str]:
    """Return (instance name, public address) from recorded state.

    Raises:
        ConvergenceError: If there is no instance with a public address
    """
    instance = record.resources.get(INSTANCE)
    if instance is None or not instance.outputs.get("public_ip"):
        raise ConvergenceError("No instance with a public address is recorded. Run 'stackgate apply' first.")
    return instance.outputs.get("name", instance.resource_id), instance.outputs["public_ip"]


def ssh_config_for(cfg: DesiredStateConfig, address: str) -> SSHConfig:
    return SSHConfig(
        host=address,
        user=cfg.cloud.admin_username,
        key_path=cfg.private_key_path,
        port=cfg.ssh.port,
    )


def deployment_outputs(cfg: DesiredStateConfig, record: StateRecord) -> dict[str, Any]:
    """Values shown by ``output`` and at the end of ``up``."""
    instance = record.resources.get(INSTANCE)
    outputs: dict[str, Any] = {
        "resource_group": cfg.cloud.resource_group,
        "instance_id": instance.resource_id if instance else None,
        "instance_name": instance.outputs.get("name") if instance else None,
        "instance_public_ip": instance.outputs.get("public_ip") if instance else None,
        "application_url": cfg.application.url,
        "ssh_command": None,
    }
    if outputs["instance_public_ip"]:
        outputs["ssh_command"] = (
            f"ssh -i {cfg.ssh.private_key_path} {cfg.cloud.admin_username}@{outputs['instance_public_ip']}"
        )
    if record.convergence is not None:
        outputs["last_converged_at"] = record.convergence.completed_at
    return outputs


__all__ = [
    "STACKGATE_ERRORS",
    "console",
    "deployment_outputs",
    "handle_errors",
    "load_config",
    "parse_extra_vars",
    "render_plan",
    "require_instance",
    "ssh_config_for",
]
