"""Provisioning commands for stackgate.

Commands:
    - init: Create the config template and state directory
    - plan: Show what apply would change
    - apply: Provision and converge
    - destroy: Delete every recorded resource
    - replace: Recreate the instance (create-before-destroy)
    - up: Guided end-to-end setup
    - output: Show deployment outputs
"""

import json
import logging
import sys

import click
from rich.table import Table

from stackgate.blueprint import INSTANCE
from stackgate.commands.cli_helpers import (
    console,
    deployment_outputs,
    handle_errors,
    load_config,
    parse_extra_vars,
    render_plan,
    ssh_config_for,
)
from stackgate.config_manager import ConfigManager
from stackgate.deployment import DeploymentPipeline, DeploymentResult
from stackgate.modules.prerequisites import PrerequisiteChecker
from stackgate.planner import ChangeAction, ResourceChange
from stackgate.remote_exec import RemoteExecError, RemoteExecutor
from stackgate.state_store import StateError, StateStore
from stackgate.validation import wait_for_application

logger = logging.getLogger(__name__)

__all__ = [
    "apply_command",
    "destroy_command",
    "init_command",
    "output_command",
    "plan_command",
    "replace_command",
    "up_command",
]


def _announce(change: ResourceChange) -> None:
    verb = {
        ChangeAction.CREATE: "Creating",
        ChangeAction.UPDATE: "Updating",
        ChangeAction.REPLACE: "Replacing",
        ChangeAction.DELETE: "Destroying",
    }.get(change.action, "Checking")
    label = f"{change.address} (deposed)" if change.deposed else change.address
    click.echo(f"{verb} {label}...")


def _report(result: DeploymentResult) -> None:
    if result.apply is not None:
        if result.apply.changed:
            counts = result.apply.plan.counts()
            click.echo(
                f"\nApply complete! Resources: {counts['add']} added, "
                f"{counts['change']} changed, {counts['destroy']} destroyed."
            )
        else:
            click.echo("\nNo infrastructure changes.")

    outcome = result.convergence
    if outcome is None:
        return
    if outcome.ran:
        click.echo(
            f"Playbook completed in {outcome.playbook.duration:.0f}s "
            f"(host ready after {outcome.probe.attempts} attempt(s))."
        )
    else:
        click.echo("Playbook not run: configuration unchanged.")


@click.command(name="init")
@click.option("--config", help="Config file path", type=click.Path())
def init_command(config: str | None):
    """Create stackgate.toml and the state directory.

    On first run the commented template is written and the command exits
    with status 1 so you edit it before going further. On later runs the
    configuration is validated.
    """
    with handle_errors():
        config_path = ConfigManager.get_config_path(config)
        if not config_path.exists():
            ConfigManager.write_template(config)
            click.echo(f"Created {config_path}")
            click.echo("Edit it with your values and run 'stackgate init' again.", err=True)
            sys.exit(1)

        cfg = load_config(config)
        try:
            cfg.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateError(f"Cannot create state directory {cfg.state_dir}: {e}") from e

        click.echo(f"Configuration is valid: {config_path}")
        click.echo(f"State directory: {cfg.state_dir}")


@click.command(name="plan")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--refresh/--no-refresh", default=True, help="Read actual state from Azure first")
@click.option("--detailed-exitcode", is_flag=True, help="Exit 2 when there are changes")
def plan_command(config: str | None, refresh: bool, detailed_exitcode: bool):
    """Show what apply would change, without changing anything."""
    with handle_errors():
        cfg = load_config(config)
        pipeline = DeploymentPipeline(cfg)
        plan, reasons = pipeline.plan(refresh=refresh)
        render_plan(plan, reasons)

    if detailed_exitcode and (not plan.is_empty or reasons):
        sys.exit(2)


@click.command(name="apply")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@click.option("--converge/--no-converge", default=True, help="Run the convergence stage after provisioning")
@click.option("-e", "--extra-var", "extra_vars", multiple=True, metavar="KEY=VALUE", help="Extra playbook variable")
def apply_command(config: str | None, auto_approve: bool, converge: bool, extra_vars: tuple[str, ...]):
    """Provision infrastructure, then run the playbook if anything changed."""
    variables = parse_extra_vars(extra_vars)
    with handle_errors():
        cfg = load_config(config)
        pipeline = DeploymentPipeline(cfg, on_change=_announce)

        plan, reasons = pipeline.plan()
        render_plan(plan, reasons if converge else [])
        if plan.is_empty and not (converge and reasons):
            return

        if not plan.is_empty and not auto_approve:
            click.confirm("\nDo you want to perform these actions?", abort=True)

        result = pipeline.apply(converge=converge, extra_vars=variables, plan=plan)
        _report(result)


@click.command(name="destroy")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
def destroy_command(config: str | None, auto_approve: bool):
    """Destroy all infrastructure recorded in the state file."""
    with handle_errors():
        cfg = load_config(config, check_files=False)
        record = StateStore(cfg.state_dir).load()
        if record.is_empty:
            click.echo("Nothing to destroy.")
            return

        click.echo("The following resources will be destroyed:")
        for address in record.resources:
            click.echo(f"  - {address}")
        for state in record.deposed:
            click.echo(f"  - {state.address} (deposed)")

        if not auto_approve:
            click.secho("\nWARNING: This will destroy all infrastructure!", fg="red")
            answer = click.prompt("Type 'yes' to confirm", default="", show_default=False)
            if answer != "yes":
                click.echo("Destroy cancelled.")
                return

        pipeline = DeploymentPipeline(cfg, specs=[], on_change=_announce)
        destroyed = pipeline.destroy()
        click.echo(f"\nDestroy complete! {len(destroyed)} resource(s) destroyed.")


@click.command(name="replace")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
def replace_command(config: str | None, auto_approve: bool):
    """Recreate the instance, e.g. after it lost its public address.

    The new instance is created and verified before the old one is
    destroyed; the inventory is regenerated and the playbook runs against
    the new host.
    """
    with handle_errors():
        cfg = load_config(config)
        pipeline = DeploymentPipeline(cfg, on_change=_announce)
        plan, reasons = pipeline.plan(replace=(INSTANCE,))
        render_plan(plan, reasons)

        if not auto_approve:
            click.confirm("\nReplace the instance?", abort=True)

        result = pipeline.apply(replace=(INSTANCE,), plan=plan)
        _report(result)


@click.command(name="up")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option("--verify", is_flag=True, help="Wait for the application URL to respond")
def up_command(config: str | None, yes: bool, verify: bool):
    """Check prerequisites, provision, converge and report access details."""
    with handle_errors():
        click.echo("Checking prerequisites...")
        PrerequisiteChecker.require()

        config_path = ConfigManager.get_config_path(config)
        if not config_path.exists():
            ConfigManager.write_template(config)
            click.echo(f"Created {config_path}", err=True)
            click.echo("Edit it with your values and run 'stackgate up' again.", err=True)
            sys.exit(1)

        cfg = load_config(config)
        pipeline = DeploymentPipeline(cfg, on_change=_announce)

        plan, reasons = pipeline.plan()
        render_plan(plan, reasons)
        if not plan.is_empty and not yes and not click.confirm("\nDo you want to proceed?"):
            click.echo("Deployment cancelled.")
            return

        result = pipeline.apply(plan=plan)
        _report(result)

        outputs = deployment_outputs(cfg, result.apply.record)
        address = outputs["instance_public_ip"]
        click.echo("")
        click.echo(f"Application URL: {outputs['application_url'] or '(no domain configured)'}")
        click.echo(f"SSH Command:     {outputs['ssh_command']}")

        try:
            check = RemoteExecutor.execute_command(
                ssh_config_for(cfg, address), "docker --version && docker compose version"
            )
        except RemoteExecError as e:
            logger.warning(f"Could not check Docker on the host: {e}")
        else:
            if check.success:
                click.echo(check.stdout.strip())
            else:
                logger.warning("Docker is not fully configured yet")

        click.echo("\nIt may take a few minutes for TLS certificates to be issued.")

        if verify and outputs["application_url"]:
            click.echo("Waiting for the application to respond...")
            if not wait_for_application(outputs["application_url"]):
                logger.warning(
                    "Application is not responding yet; this is normal while certificates are being issued"
                )


@click.command(name="output")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--json", "as_json", is_flag=True, help="Print outputs as JSON")
def output_command(config: str | None, as_json: bool):
    """Show instance name, address, SSH command and application URL."""
    with handle_errors():
        cfg = load_config(config, check_files=False)
        record = StateStore(cfg.state_dir).load()
        outputs = deployment_outputs(cfg, record)

        if as_json:
            click.echo(json.dumps(outputs, indent=2, sort_keys=True))
            return

        if record.is_empty:
            click.echo("No state. Run 'stackgate apply' first.")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("Output", style="cyan")
        table.add_column("Value")
        for key, value in outputs.items():
            table.add_row(key, "-" if value is None else str(value))
        console.print(table)
