"""Validation command for stackgate."""

import logging
import sys

import click
from rich.table import Table

from stackgate.commands.cli_helpers import STACKGATE_ERRORS, console, handle_errors, load_config
from stackgate.config_manager import ConfigError
from stackgate.deployment import DeploymentPipeline
from stackgate.state_store import StateStore
from stackgate.validation import ValidationReport, Validator

logger = logging.getLogger(__name__)

__all__ = ["validate_command"]


def _render(report: ValidationReport) -> None:
    table = Table(title="Validation", show_header=True, header_style="bold")
    table.add_column("Check", style="cyan")
    table.add_column("Result", no_wrap=True)
    table.add_column("Details")
    for result in report.results:
        mark = "[green]PASS[/green]" if result.passed else "[red]FAIL[/red]"
        table.add_row(result.name, mark, result.detail)
    console.print(table)

    click.echo(f"\nPassed: {report.passed}")
    click.echo(f"Failed: {report.failed}")
    if report.ok:
        click.secho("All checks passed!", fg="green")
    else:
        click.secho("Some checks failed. Please review the output above.", fg="red")


@click.command(name="validate")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--skip-drift", is_flag=True, help="Skip the idempotency (drift) check")
def validate_command(config: str | None, skip_drift: bool):
    """Validate the running deployment end to end.

    Checks state, SSH, Docker, containers, the reverse proxy, open ports,
    the application and its APIs, the TLS certificate, Redis, the inventory
    and that a new apply would change nothing.
    """
    with handle_errors():
        cfg = load_config(config, check_files=False)
        record = StateStore(cfg.state_dir).load()

        idempotency_check = None
        if not skip_drift:
            try:
                pipeline = DeploymentPipeline(cfg)
            except ConfigError as e:
                logger.warning(f"Drift check unavailable: {e}")
            else:

                def idempotency_check() -> list[str]:
                    try:
                        plan, reasons = pipeline.plan()
                    except STACKGATE_ERRORS as e:
                        return [f"plan failed: {e}"]
                    return [change.describe() for change in plan.actionable] + reasons

        report = Validator(cfg, record, idempotency_check=idempotency_check).run()

    _render(report)
    sys.exit(0 if report.ok else 1)
