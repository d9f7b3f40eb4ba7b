"""
Inventory Module

Render and read the Ansible inventory that points the playbook at the
provisioned instance.

Two formats are supported, picked by file suffix:
- ``hosts`` / ``hosts.ini``: INI inventory
- ``hosts.yml`` / ``hosts.yaml``: YAML inventory
"""

import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

INVENTORY_GROUP = "app_servers"

_YAML_SUFFIXES = (".yml", ".yaml")


class InventoryError(Exception):
    """Raised when an inventory cannot be rendered or parsed."""

    pass


def is_yaml_inventory(path: Path) -> bool:
    return Path(path).suffix.lower() in _YAML_SUFFIXES


def render_inventory(
    path: Path,
    host: str,
    user: str,
    private_key_file: str,
    group: str = INVENTORY_GROUP,
) -> str:
    """
    Render inventory text for a single host.

    Args:
        path: Inventory path (the suffix selects the format)
        host: Public address of the instance
        user: Login identity on the instance
        private_key_file: SSH private key used by Ansible
        group: Inventory group the playbook targets

    Returns:
        str: Inventory file content

    Raises:
        InventoryError: If the host is empty
    """
    if not host:
        raise InventoryError("Cannot render inventory without a host address")

    if is_yaml_inventory(path):
        document = {
            group: {
                "hosts": {
                    host: {
                        "ansible_host": host,
                        "ansible_user": user,
                        "ansible_ssh_private_key_file": private_key_file,
                    }
                }
            }
        }
        return "# Managed by stackgate - do not edit\n" + yaml.safe_dump(
            document, default_flow_style=False, sort_keys=True
        )

    return (
        "# Managed by stackgate - do not edit\n"
        f"[{group}]\n"
        f"{host} ansible_host={host} ansible_user={user} "
        f"ansible_ssh_private_key_file={private_key_file}\n"
        "\n"
        f"[{group}:vars]\n"
        "ansible_python_interpreter=/usr/bin/python3\n"
    )


def parse_inventory_hosts(path: Path, text: str, group: str = INVENTORY_GROUP) -> list[str]:
    """
    Extract the ``ansible_host`` addresses of a group.

    Args:
        path: Inventory path (the suffix selects the format)
        text: Inventory content
        group: Group to read

    Returns:
        list: Addresses in file order (empty if the group is missing)

    Raises:
        InventoryError: If the content cannot be parsed
    """
    if is_yaml_inventory(path):
        try:
            document = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise InventoryError(f"Invalid YAML inventory {path}: {e}") from e
        hosts = (document.get(group) or {}).get("hosts") or {}
        return [(vars_ or {}).get("ansible_host", name) for name, vars_ in hosts.items()]

    addresses = []
    section = None
    for number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("["):
            if not line.endswith("]"):
                raise InventoryError(f"Invalid INI inventory {path}: bad section on line {number}")
            section = line[1:-1].strip()
            continue
        if section != group:
            continue
        name, *pairs = line.split()
        host_vars = dict(p.split("=", 1) for p in pairs if "=" in p)
        addresses.append(host_vars.get("ansible_host", name))
    return addresses


def read_inventory_hosts(path: Path, group: str = INVENTORY_GROUP) -> list[str]:
    """
    Read an inventory file and return the group's addresses.

    Raises:
        InventoryError: If the file is missing or invalid
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise InventoryError(f"Cannot read inventory {path}: {e.strerror}") from e
    hosts = parse_inventory_hosts(path, text, group)
    logger.debug(f"Inventory {path} lists {len(hosts)} host(s) in [{group}]")
    return hosts


__all__ = [
    "INVENTORY_GROUP",
    "InventoryError",
    "parse_inventory_hosts",
    "read_inventory_hosts",
    "render_inventory",
]
