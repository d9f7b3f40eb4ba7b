"""stackgate modules - self-contained bricks used by the provisioner and the trigger

- Inventory: Render and read the Ansible inventory
- Fingerprint: Hash the playbook and roles
- SSH Connector: Handshakes, remote commands, interactive sessions
- Readiness: Bounded SSH readiness probe
- Ansible Runner: Run ansible-playbook
- Prerequisites Checker: Verify required tools
- Subprocess Helper: Run chatty subprocesses safely
"""

from . import (
    ansible_runner,
    fingerprint,
    inventory,
    prerequisites,
    readiness,
    ssh_connector,
    subprocess_helper,
)

__all__ = [
    "ansible_runner",
    "fingerprint",
    "inventory",
    "prerequisites",
    "readiness",
    "ssh_connector",
    "subprocess_helper",
]
