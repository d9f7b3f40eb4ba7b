"""Connectivity commands for stackgate.

Commands:
    - ssh: Interactive SSH session to the instance
    - logs: Application container logs
    - status: Application container status
"""

import logging
import sys

import click

from stackgate.commands.cli_helpers import handle_errors, load_config, require_instance, ssh_config_for
from stackgate.modules.ssh_connector import SSHConnector
from stackgate.remote_exec import RemoteExecutor, compose_logs_command, compose_ps_command
from stackgate.state_store import StateStore

logger = logging.getLogger(__name__)

__all__ = ["logs_command", "ssh_command", "status_command"]


def _run_on_host(config: str | None, build_command) -> None:
    with handle_errors():
        cfg = load_config(config, check_files=False)
        _name, address = require_instance(StateStore(cfg.state_dir).load())
        result = RemoteExecutor.execute_command(
            ssh_config_for(cfg, address),
            build_command(cfg.application.app_dir),
            timeout=60,
        )

    if result.stdout:
        click.echo(result.stdout.rstrip())
    if not result.success:
        click.echo(f"Error: {result.stderr.strip() or f'exit code {result.exit_code}'}", err=True)
        sys.exit(1)


@click.command(name="ssh")
@click.option("--config", help="Config file path", type=click.Path())
@click.argument("remote_command", nargs=-1, type=click.UNPROCESSED)
def ssh_command(config: str | None, remote_command: tuple[str, ...]):
    """SSH into the instance, optionally running a command.

    \b
    Examples:
        stackgate ssh
        stackgate ssh -- docker ps
    """
    with handle_errors():
        cfg = load_config(config, check_files=False)
        name, address = require_instance(StateStore(cfg.state_dir).load())
        logger.debug(f"Connecting to {name}")
        exit_code = SSHConnector.connect(
            ssh_config_for(cfg, address),
            remote_command=" ".join(remote_command) if remote_command else None,
        )
    sys.exit(exit_code)


@click.command(name="logs")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("-n", "--lines", default=50, show_default=True, type=click.IntRange(min=1), help="Lines per container")
def logs_command(config: str | None, lines: int):
    """Show application logs (docker compose logs) from the instance."""
    _run_on_host(config, lambda app_dir: compose_logs_command(app_dir, lines))


@click.command(name="status")
@click.option("--config", help="Config file path", type=click.Path())
def status_command(config: str | None):
    """Show container status (docker compose ps) on the instance."""
    _run_on_host(config, compose_ps_command)
