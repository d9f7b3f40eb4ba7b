"""Maintenance commands for stackgate.

Commands:
    - check-prereqs: Report required and optional tools
    - backup: Copy the state file to backups/
    - clean: Remove stale temporary files (and optionally backups)
    - config: Show or change stackgate.toml values
"""

import sys

import click
import tomlkit
from rich.table import Table

from stackgate.commands.cli_helpers import console, handle_errors, load_config
from stackgate.config_manager import ConfigManager
from stackgate.modules.prerequisites import PrerequisiteChecker
from stackgate.state_store import StateError, StateStore

__all__ = [
    "backup_command",
    "check_prereqs_command",
    "clean_command",
    "config_group",
]

BACKUP_DIR_NAME = "backups"


@click.command(name="check-prereqs")
@click.option("--config", help="Config file path", type=click.Path())
def check_prereqs_command(config: str | None):
    """Check that the tools stackgate needs are installed."""
    result = PrerequisiteChecker.check_all()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    for tool in PrerequisiteChecker.REQUIRED_TOOLS + PrerequisiteChecker.OPTIONAL_TOOLS:
        optional = tool in PrerequisiteChecker.OPTIONAL_TOOLS
        if tool in result.available:
            status = "[green]installed[/green]"
        elif optional:
            status = "[yellow]not found (optional)[/yellow]"
        else:
            status = "[red]not found[/red]"
        table.add_row(tool, status)

    config_path = ConfigManager.get_config_path(config)
    table.add_row(config_path.name, "[green]exists[/green]" if config_path.exists() else "[red]not found[/red]")
    console.print(table)

    if not result.all_available:
        click.echo(PrerequisiteChecker.format_missing_message(result.missing, result.platform_name), err=True)
        sys.exit(1)


@click.command(name="backup")
@click.option("--config", help="Config file path", type=click.Path())
def backup_command(config: str | None):
    """Back up the state file to backups/state-YYYYmmdd-HHMMSS.json."""
    with handle_errors():
        cfg = load_config(config, check_files=False)
        target = StateStore(cfg.state_dir).backup(cfg.project_dir / BACKUP_DIR_NAME)
        click.echo(f"Backup created: {target}")


@click.command(name="clean")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--backups", "remove_backups", is_flag=True, help="Also delete state backups")
def clean_command(config: str | None, remove_backups: bool):
    """Remove leftover temporary state files."""
    with handle_errors():
        cfg = load_config(config, check_files=False)
        removed = StateStore(cfg.state_dir).clean_temporary_files()

        if remove_backups:
            backup_dir = cfg.project_dir / BACKUP_DIR_NAME
            for path in sorted(backup_dir.glob("state-*.json")) if backup_dir.is_dir() else []:
                try:
                    path.unlink()
                except OSError as e:
                    raise StateError(f"Cannot remove {path}: {e.strerror}") from e
                removed.append(path)

        for path in removed:
            click.echo(f"Removed {path}")
        click.echo(f"Cleaned {len(removed)} file(s).")


@click.group(name="config")
def config_group():
    """Show or change stackgate.toml values.

    \b
    Examples:
        stackgate config show
        stackgate config set cloud.machine_class Standard_B2ms
        stackgate config set cloud.ingress_ports "[22, 80, 443, 8080]"
    """


@config_group.command(name="show")
@click.option("--config", help="Config file path", type=click.Path())
def config_show(config: str | None):
    """Print the effective configuration (defaults filled in)."""
    with handle_errors():
        cfg = load_config(config, check_files=False)
        click.echo(tomlkit.dumps(cfg.to_dict()).rstrip())


@config_group.command(name="set")
@click.option("--config", help="Config file path", type=click.Path())
@click.argument("key")
@click.argument("value")
def config_set(config: str | None, key: str, value: str):
    """Set KEY (section.name) to VALUE, keeping comments intact."""
    with handle_errors():
        stored = ConfigManager.set_value(key, value, config)
        click.echo(f"Set {key} = {stored!r}")
