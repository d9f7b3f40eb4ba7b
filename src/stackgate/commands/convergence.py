"""Convergence command for stackgate."""

import click

from stackgate.commands.cli_helpers import handle_errors, load_config, parse_extra_vars
from stackgate.deployment import DeploymentPipeline

__all__ = ["converge_command"]


@click.command(name="converge")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--force", is_flag=True, help="Run even if nothing changed (sets force_restart=true)")
@click.option("-e", "--extra-var", "extra_vars", multiple=True, metavar="KEY=VALUE", help="Extra playbook variable")
def converge_command(config: str | None, force: bool, extra_vars: tuple[str, ...]):
    """Run the playbook against the provisioned instance.

    Without --force the playbook only runs when the instance was replaced or
    the playbook or roles changed since the last successful run.

    \b
    Examples:
        stackgate converge
        stackgate converge --force
        stackgate converge -e github_repo=https://github.com/me/app.git
    """
    variables = parse_extra_vars(extra_vars)
    with handle_errors():
        cfg = load_config(config)
        pipeline = DeploymentPipeline(cfg, specs=[])
        outcome = pipeline.converge(force=force, extra_vars=variables)

        if outcome.ran:
            click.echo(f"Converged {outcome.decision.record.address}: {'; '.join(outcome.decision.reasons)}")
        else:
            click.echo("Configuration is up to date. Use --force to run the playbook anyway.")
