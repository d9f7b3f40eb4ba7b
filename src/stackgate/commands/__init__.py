"""Commands for stackgate CLI."""

from stackgate.commands.connectivity import logs_command, ssh_command, status_command
from stackgate.commands.convergence import converge_command
from stackgate.commands.maintenance import (
    backup_command,
    check_prereqs_command,
    clean_command,
    config_group,
)
from stackgate.commands.provisioning import (
    apply_command,
    destroy_command,
    init_command,
    output_command,
    plan_command,
    replace_command,
    up_command,
)
from stackgate.commands.validate import validate_command

__all__ = [
    "apply_command",
    "backup_command",
    "check_prereqs_command",
    "clean_command",
    "config_group",
    "converge_command",
    "destroy_command",
    "init_command",
    "logs_command",
    "output_command",
    "plan_command",
    "replace_command",
    "ssh_command",
    "status_command",
    "up_command",
    "validate_command",
]
