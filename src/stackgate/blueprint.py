"""Turn the desired-state config into resource specs.

The deployment is always the same five resources:

    resource_group.main
    ssh_key.deployer       -> resource_group.main
    network_rules.app      -> resource_group.main
    instance.app_server    -> resource_group.main, ssh_key.deployer, network_rules.app
    inventory.ansible      -> instance.app_server
"""

from stackgate.config_manager import DesiredStateConfig
from stackgate.modules.inventory import INVENTORY_GROUP
from stackgate.resources import OutputRef, ResourceSpec

RESOURCE_GROUP = "resource_group.main"
SSH_KEY = "ssh_key.deployer"
NETWORK_RULES = "network_rules.app"
INSTANCE = "instance.app_server"
INVENTORY = "inventory.ansible"


def build_resources(config: DesiredStateConfig, public_key: str | None = None) -> list[ResourceSpec]:
    """
    Build the resource specs for ``config``.

    Args:
        config: Validated configuration
        public_key: SSH public key text (read from ssh.public_key_path if omitted)

    Returns:
        list: Specs in declaration order

    Raises:
        ConfigError: If the public key cannot be read
    """
    if public_key is None:
        public_key = config.read_public_key()

    cloud = config.cloud
    project = config.project.name
    group = OutputRef(RESOURCE_GROUP, "name")

    resource_group = ResourceSpec(
        kind="resource_group",
        name="main",
        attributes={"name": cloud.resource_group, "location": cloud.region},
        immutable=frozenset({"name", "location"}),
    )

    ssh_key = ResourceSpec(
        kind="ssh_key",
        name="deployer",
        attributes={
            "name": f"{project}-key",
            "resource_group": group,
            "location": cloud.region,
            "public_key": public_key,
        },
        immutable=frozenset({"name", "resource_group", "location", "public_key"}),
    )

    network_rules = ResourceSpec(
        kind="network_rules",
        name="app",
        attributes={
            "name": f"{project}-nsg",
            "resource_group": group,
            "location": cloud.region,
            "ingress_ports": sorted(cloud.ingress_ports),
            "egress": cloud.egress,
        },
        immutable=frozenset({"name", "resource_group", "location"}),
    )

    instance_attributes = {
        "name_prefix": f"{project}-vm",
        "resource_group": group,
        "location": cloud.region,
        "machine_class": cloud.machine_class,
        "image": cloud.image,
        "admin_username": cloud.admin_username,
        "public_key": OutputRef(SSH_KEY, "public_key"),
        "vnet_name": OutputRef(NETWORK_RULES, "vnet_name"),
        "subnet_name": OutputRef(NETWORK_RULES, "subnet_name"),
        "os_disk_size_gb": cloud.os_disk_size_gb,
        "os_disk_sku": cloud.os_disk_sku,
        "custom_data": cloud.custom_data,
        "tags": {"project": project, "managed-by": "stackgate"},
    }
    instance = ResourceSpec(
        kind="instance",
        name="app_server",
        attributes=instance_attributes,
        immutable=frozenset(instance_attributes) - {"tags"},
        create_before_destroy=True,
    )

    inventory = ResourceSpec(
        kind="inventory",
        name="ansible",
        attributes={
            "path": str(config.inventory_path),
            "host": OutputRef(INSTANCE, "public_ip"),
            "user": cloud.admin_username,
            "private_key_file": str(config.private_key_path),
            "group": INVENTORY_GROUP,
        },
        immutable=frozenset({"path"}),
    )

    return [resource_group, ssh_key, network_rules, instance, inventory]


__all__ = [
    "INSTANCE",
    "INVENTORY",
    "NETWORK_RULES",
    "RESOURCE_GROUP",
    "SSH_KEY",
    "build_resources",
]
