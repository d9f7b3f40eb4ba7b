"""stackgate command-line interface.

Provision one Azure VM for a containerized application stack, wait until it
answers over SSH, and converge it with Ansible whenever the instance or the
playbook changes.

Commands:
    init, plan, apply, destroy, replace, up, output   provisioning
    converge                                         configuration management
    ssh, logs, status                                access to the host
    validate                                         end-to-end checks
    check-prereqs, backup, clean, config             maintenance
"""

import logging

import click

from stackgate import __version__
from stackgate.commands import (
    apply_command,
    backup_command,
    check_prereqs_command,
    clean_command,
    config_group,
    converge_command,
    destroy_command,
    init_command,
    logs_command,
    output_command,
    plan_command,
    replace_command,
    ssh_command,
    status_command,
    up_command,
    validate_command,
)

logger = logging.getLogger(__name__)


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """stackgate - provision a VM and converge it with Ansible.

    \b
    CONFIGURATION:
        Config file: ./stackgate.toml (override with --config on each command)
        State file:  ./.stackgate/state.json

    \b
    QUICK START:
        stackgate init          # write stackgate.toml, then edit it
        stackgate up            # provision, converge and report access details
        stackgate validate      # check the running deployment

    For help on any command: stackgate <command> --help
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


for command in (
    init_command,
    plan_command,
    apply_command,
    destroy_command,
    replace_command,
    up_command,
    output_command,
    converge_command,
    ssh_command,
    logs_command,
    status_command,
    validate_command,
    check_prereqs_command,
    backup_command,
    clean_command,
    config_group,
):
    main.add_command(command)


if __name__ == "__main__":
    main()
