"""Azure drivers.

Each driver shells out to the Azure CLI through run_az_command, the same way
VMs are created by hand with `az vm create`. Only the calls needed to
converge one VM, its network rules and its key material are implemented.

Security:
- SSH key authentication only (no passwords)
- Public keys only ever leave the machine
- az argument lists, never shell strings
"""

import json
import logging
import secrets
import subprocess
from typing import Any

from stackgate.azure_cli_executor import is_not_found, run_az_command, run_az_json
from stackgate.drivers.base import DriverError, ResourceDriver
from stackgate.resources import ResourceSpec, ResourceState

logger = logging.getLogger(__name__)

VM_CREATE_TIMEOUT = 900
DEFAULT_TIMEOUT = 180

INGRESS_PRIORITY_BASE = 1010
EGRESS_PRIORITY = 1000
SUBNET_NAME = "default"


def _state(
    spec_or_state, resource_id: str, attributes: dict[str, Any], outputs: dict[str, Any], depends_on
) -> ResourceState:
    return ResourceState(
        kind=spec_or_state.kind,
        name=spec_or_state.name,
        resource_id=resource_id,
        attributes=dict(attributes),
        outputs=outputs,
        depends_on=sorted(depends_on),
    )


def _az(cmd: list[str], timeout: int = DEFAULT_TIMEOUT) -> Any:
    """Run a mutating az command and parse its JSON output.

    Raises:
        DriverError: With az's stderr when the command fails
    """
    try:
        return run_az_json(cmd, timeout=timeout)
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
        raise DriverError(f"{' '.join(cmd[:3])} failed: {detail}") from e
    except subprocess.TimeoutExpired as e:
        raise DriverError(f"{' '.join(cmd[:3])} timed out after {timeout}s") from e
    except FileNotFoundError as e:
        raise DriverError("Azure CLI (az) not found. Install it and run 'az login'.") from e
    except ValueError as e:
        raise DriverError(f"{' '.join(cmd[:3])} returned invalid JSON: {e}") from e


def _az_show(cmd: list[str]) -> Any | None:
    """Run a read-only az command, returning None if the resource is gone.

    Raises:
        DriverError: On failures other than "not found"
    """
    try:
        result = run_az_command([*cmd, "--output", "json"], check=False, timeout=DEFAULT_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise DriverError(f"{' '.join(cmd[:3])} timed out") from e
    except FileNotFoundError as e:
        raise DriverError("Azure CLI (az) not found. Install it and run 'az login'.") from e

    if result.returncode != 0:
        if is_not_found(result.stderr):
            return None
        raise DriverError(f"{' '.join(cmd[:3])} failed: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout) if result.stdout.strip() else None
    except ValueError as e:
        raise DriverError(f"{' '.join(cmd[:3])} returned invalid JSON: {e}") from e


def _az_delete(cmd: list[str], timeout: int = DEFAULT_TIMEOUT) -> None:
    """Run a delete command; a resource that is already gone counts as deleted."""
    try:
        result = run_az_command(cmd, check=False, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise DriverError(f"{' '.join(cmd[:3])} timed out after {timeout}s") from e
    except FileNotFoundError as e:
        raise DriverError("Azure CLI (az) not found. Install it and run 'az login'.") from e
    if result.returncode != 0 and not is_not_found(result.stderr):
        raise DriverError(f"{' '.join(cmd[:3])} failed: {result.stderr.strip()}")


class ResourceGroupDriver(ResourceDriver):
    """Azure resource group holding everything else."""

    kind = "resource_group"

    def create(self, spec: ResourceSpec, attributes: dict[str, Any]) -> ResourceState:
        name = attributes["name"]
        logger.info(f"Creating resource group {name} in {attributes['location']}")
        data = _az(["az", "group", "create", "--name", name, "--location", attributes["location"]])
        resource_id = (data or {}).get("id", name)
        return _state(spec, resource_id, attributes, {"name": name, "id": resource_id}, spec.dependencies())

    def update(self, prior: ResourceState, attributes: dict[str, Any]) -> ResourceState:
        raise DriverError("Resource groups have no mutable attributes")

    def delete(self, state: ResourceState) -> None:
        logger.info(f"Deleting resource group {state.attributes['name']}")
        _az_delete(
            ["az", "group", "delete", "--name", state.attributes["name"], "--yes"],
            timeout=VM_CREATE_TIMEOUT,
        )

    def read(self, state: ResourceState) -> ResourceState | None:
        data = _az_show(["az", "group", "show", "--name", state.attributes["name"]])
        if data is None:
            return None
        actual = dict(state.attributes, location=data.get("location", state.attributes["location"]))
        return _state(state, state.resource_id, actual, dict(state.outputs), state.depends_on)


class SSHKeyDriver(ResourceDriver):
    """Public key registered as an Azure SSH key resource."""

    kind = "ssh_key"

    def create(self, spec: ResourceSpec, attributes: dict[str, Any]) -> ResourceState:
        name = attributes["name"]
        logger.info(f"Registering SSH public key {name}")
        data = _az(
            [
                "az",
                "sshkey",
                "create",
                "--name",
                name,
                "--resource-group",
                attributes["resource_group"],
                "--location",
                attributes["location"],
                "--public-key",
                attributes["public_key"],
            ]
        )
        outputs = {"name": name, "public_key": attributes["public_key"]}
        return _state(spec, (data or {}).get("id", name), attributes, outputs, spec.dependencies())

    def update(self, prior: ResourceState, attributes: dict[str, Any]) -> ResourceState:
        raise DriverError("SSH keys cannot be updated in place")

    def delete(self, state: ResourceState) -> None:
        _az_delete(
            [
                "az",
                "sshkey",
                "delete",
                "--name",
                state.attributes["name"],
                "--resource-group",
                state.attributes["resource_group"],
                "--yes",
            ]
        )

    def read(self, state: ResourceState) -> ResourceState | None:
        data = _az_show(
            [
                "az",
                "sshkey",
                "show",
                "--name",
                state.attributes["name"],
                "--resource-group",
                state.attributes["resource_group"],
            ]
        )
        if data is None:
            return None
        actual = dict(state.attributes)
        if data.get("publicKey"):
            actual["public_key"] = data["publicKey"].strip()
        return _state(state, state.resource_id, actual, dict(state.outputs), state.depends_on)


class NetworkRulesDriver(ResourceDriver):
    """Network security group plus the subnet it protects.

    Ingress rules are named ``allow-tcp-<port>``; egress is a single
    ``allow-all-outbound`` or ``deny-all-outbound`` rule.
    """

    kind = "network_rules"

    def create(self, spec: ResourceSpec, attributes: dict[str, Any]) -> ResourceState:
        nsg, rg, location = attributes["name"], attributes["resource_group"], attributes["location"]
        vnet = f"{nsg}-vnet"
        logger.info(f"Creating network rules {nsg} (ports {attributes['ingress_ports']})")

        data = _az(
            ["az", "network", "nsg", "create", "--name", nsg, "--resource-group", rg, "--location", location]
        )
        nsg_id = ((data or {}).get("NewNSG") or data or {}).get("id", nsg)

        self._create_rules(rg, nsg, attributes["ingress_ports"], attributes["egress"])

        _az(
            [
                "az",
                "network",
                "vnet",
                "create",
                "--name",
                vnet,
                "--resource-group",
                rg,
                "--location",
                location,
                "--address-prefix",
                "10.0.0.0/16",
                "--subnet-name",
                SUBNET_NAME,
                "--subnet-prefix",
                "10.0.0.0/24",
                "--network-security-group",
                nsg,
            ]
        )

        outputs = {"name": nsg, "vnet_name": vnet, "subnet_name": SUBNET_NAME}
        return _state(spec, nsg_id, attributes, outputs, spec.dependencies())

    def update(self, prior: ResourceState, attributes: dict[str, Any]) -> ResourceState:
        rg, nsg = prior.attributes["resource_group"], prior.attributes["name"]
        old_ports = set(prior.attributes.get("ingress_ports") or [])
        new_ports = set(attributes["ingress_ports"])

        for port in sorted(old_ports - new_ports):
            logger.info(f"Closing port {port} on {nsg}")
            _az_delete(self._rule_cmd("delete", rg, nsg, f"allow-tcp-{port}"))

        if prior.attributes.get("egress") != attributes["egress"]:
            for rule in ("allow-all-outbound", "deny-all-outbound"):
                _az_delete(self._rule_cmd("delete", rg, nsg, rule))
            self._create_egress_rule(rg, nsg, attributes["egress"])

        ports = list(attributes["ingress_ports"])
        for port in sorted(new_ports - old_ports):
            logger.info(f"Opening port {port} on {nsg}")
            self._create_ingress_rule(rg, nsg, port, ports.index(port))

        return _state(prior, prior.resource_id, attributes, dict(prior.outputs), prior.depends_on)

    def delete(self, state: ResourceState) -> None:
        rg = state.attributes["resource_group"]
        logger.info(f"Deleting network rules {state.attributes['name']}")
        _az_delete(
            ["az", "network", "vnet", "delete", "--name", state.outputs.get("vnet_name", ""), "--resource-group", rg]
        )
        _az_delete(["az", "network", "nsg", "delete", "--name", state.attributes["name"], "--resource-group", rg])

    def read(self, state: ResourceState) -> ResourceState | None:
        data = _az_show(
            [
                "az",
                "network",
                "nsg",
                "show",
                "--name",
                state.attributes["name"],
                "--resource-group",
                state.attributes["resource_group"],
            ]
        )
        if data is None:
            return None

        ingress: list[int] = []
        egress = None
        for rule in sorted(data.get("securityRules", []), key=lambda r: r.get("priority", 0)):
            name = rule.get("name", "")
            if name.startswith("allow-tcp-") and rule.get("direction") == "Inbound":
                try:
                    ingress.append(int(rule.get("destinationPortRange", name.rsplit("-", 1)[1])))
                except ValueError:
                    continue
            elif name == "allow-all-outbound":
                egress = "all"
            elif name == "deny-all-outbound":
                egress = "none"

        actual = dict(state.attributes, ingress_ports=sorted(ingress), egress=egress)
        return _state(state, state.resource_id, actual, dict(state.outputs), state.depends_on)

    def _create_rules(self, rg: str, nsg: str, ports: list[int], egress: str) -> None:
        for index, port in enumerate(ports):
            self._create_ingress_rule(rg, nsg, port, index)
        self._create_egress_rule(rg, nsg, egress)

    def _create_ingress_rule(self, rg: str, nsg: str, port: int, index: int) -> None:
        _az(
            [
                *self._rule_cmd("create", rg, nsg, f"allow-tcp-{port}"),
                "--priority",
                str(INGRESS_PRIORITY_BASE + index * 10),
                "--direction",
                "Inbound",
                "--access",
                "Allow",
                "--protocol",
                "Tcp",
                "--source-address-prefixes",
                "*",
                "--destination-port-ranges",
                str(port),
            ]
        )

    def _create_egress_rule(self, rg: str, nsg: str, egress: str) -> None:
        allow = egress == "all"
        _az(
            [
                *self._rule_cmd("create", rg, nsg, "allow-all-outbound" if allow else "deny-all-outbound"),
                "--priority",
                str(EGRESS_PRIORITY),
                "--direction",
                "Outbound",
                "--access",
                "Allow" if allow else "Deny",
                "--protocol",
                "*",
                "--destination-address-prefixes",
                "*",
                "--destination-port-ranges",
                "*",
            ]
        )

    @staticmethod
    def _rule_cmd(action: str, rg: str, nsg: str, rule: str) -> list[str]:
        return [
            "az",
            "network",
            "nsg",
            "rule",
            action,
            "--resource-group",
            rg,
            "--nsg-name",
            nsg,
            "--name",
            rule,
        ]


class InstanceDriver(ResourceDriver):
    """The application VM.

    Every created VM gets a fresh name (``<prefix>-<6 hex>``) so a
    replacement can exist next to its predecessor until the cut-over.
    """

    kind = "instance"

    def create(self, spec: ResourceSpec, attributes: dict[str, Any]) -> ResourceState:
        name = f"{attributes['name_prefix']}-{secrets.token_hex(3)}"
        rg = attributes["resource_group"]

        cmd = [
            "az",
            "vm",
            "create",
            "--name",
            name,
            "--resource-group",
            rg,
            "--location",
            attributes["location"],
            "--size",
            attributes["machine_class"],
            "--image",
            attributes["image"],
            "--admin-username",
            attributes["admin_username"],
            "--authentication-type",
            "ssh",
            "--ssh-key-values",
            attributes["public_key"],
            "--vnet-name",
            attributes["vnet_name"],
            "--subnet",
            attributes["subnet_name"],
            "--nsg",
            "",
            "--public-ip-sku",
            "Standard",
            "--os-disk-size-gb",
            str(attributes["os_disk_size_gb"]),
            "--storage-sku",
            attributes["os_disk_sku"],
            "--os-disk-delete-option",
            "Delete",
            "--nic-delete-option",
            "Delete",
        ]
        if attributes.get("custom_data"):
            cmd.extend(["--custom-data", attributes["custom_data"]])
        tags = attributes.get("tags") or {}
        if tags:
            cmd.extend(["--tags", *[f"{k}={v}" for k, v in sorted(tags.items())]])

        logger.info(f"Creating VM {name} ({attributes['machine_class']}); this takes 3-5 minutes...")
        data = _az(cmd, timeout=VM_CREATE_TIMEOUT) or {}

        public_ip = data.get("publicIpAddress") or self._lookup_public_ip(rg, name)
        outputs = {
            "name": name,
            "public_ip": public_ip,
            "private_ip": data.get("privateIpAddress"),
            "public_ip_name": f"{name}PublicIP",
        }
        logger.info(f"VM {name} created with public address {public_ip or '(none)'}")
        return _state(spec, data.get("id", name), attributes, outputs, spec.dependencies())

    def update(self, prior: ResourceState, attributes: dict[str, Any]) -> ResourceState:
        changed = {k for k in set(prior.attributes) | set(attributes) if prior.attributes.get(k) != attributes.get(k)}
        if changed - {"tags"}:
            raise DriverError(f"Cannot update {sorted(changed - {'tags'})} in place")

        tags = attributes.get("tags") or {}
        logger.info(f"Updating tags on VM {prior.outputs.get('name')}")
        _az(
            [
                "az",
                "tag",
                "update",
                "--resource-id",
                prior.resource_id,
                "--operation",
                "Replace",
                "--tags",
                *[f"{k}={v}" for k, v in sorted(tags.items())],
            ]
        )
        return _state(prior, prior.resource_id, attributes, dict(prior.outputs), prior.depends_on)

    def delete(self, state: ResourceState) -> None:
        rg = state.attributes["resource_group"]
        name = state.outputs.get("name")
        logger.info(f"Deleting VM {name}")
        _az_delete(
            ["az", "vm", "delete", "--name", name, "--resource-group", rg, "--yes"],
            timeout=VM_CREATE_TIMEOUT,
        )
        if state.outputs.get("public_ip_name"):
            _az_delete(
                [
                    "az",
                    "network",
                    "public-ip",
                    "delete",
                    "--name",
                    state.outputs["public_ip_name"],
                    "--resource-group",
                    rg,
                ]
            )

    def read(self, state: ResourceState) -> ResourceState | None:
        data = _az_show(
            [
                "az",
                "vm",
                "show",
                "--show-details",
                "--name",
                state.outputs.get("name", ""),
                "--resource-group",
                state.attributes["resource_group"],
            ]
        )
        if data is None:
            return None

        actual = dict(state.attributes)
        size = (data.get("hardwareProfile") or {}).get("vmSize")
        if size:
            actual["machine_class"] = size
        if "tags" in data:
            actual["tags"] = data.get("tags") or {}

        outputs = dict(state.outputs)
        outputs["public_ip"] = data.get("publicIps") or None
        outputs["private_ip"] = data.get("privateIps") or outputs.get("private_ip")
        outputs["power_state"] = data.get("powerState")
        return _state(state, state.resource_id, actual, outputs, state.depends_on)

    def check_replacement(self, state: ResourceState) -> None:
        if not state.outputs.get("public_ip"):
            raise DriverError(
                f"Replacement VM {state.outputs.get('name')} has no public address; "
                "keeping the current instance"
            )

    def _lookup_public_ip(self, rg: str, name: str) -> str | None:
        data = _az_show(["az", "vm", "show", "--show-details", "--name", name, "--resource-group", rg])
        return (data or {}).get("publicIps") or None


__all__ = [
    "InstanceDriver",
    "NetworkRulesDriver",
    "ResourceGroupDriver",
    "SSHKeyDriver",
]
