"""Configuration management module.

This module handles the desired-state configuration stored in
``stackgate.toml`` next to the Ansible payload. It describes the VM, its
network rules, SSH key material, the playbook to converge with, and the
readiness probe budget.

Security:
- Config file permissions: 0600 (owner read/write only)
- Input validation before any remote action
- Key file existence checks
"""

import logging
import os
import re
import tomllib
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import tomlkit
import yaml
from tomlkit.exceptions import ParseError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "stackgate.toml"

_PROJECT_NAME_RE = re.compile(r"^[a-z][a-z0-9-]{1,39}$")
_REGION_RE = re.compile(r"^[a-z][a-z0-9]+$")
_RESOURCE_GROUP_RE = re.compile(r"^[-\w.()]{1,90}$")
_MACHINE_CLASS_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]+$")
_USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
_DISK_SKUS = ("Standard_LRS", "StandardSSD_LRS", "Premium_LRS", "StandardSSD_ZRS", "Premium_ZRS")


class ConfigError(Exception):
    """Raised when configuration is missing or invalid.

    Attributes:
        field: Dotted name of the offending field, when known
    """

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


@dataclass
class ProjectConfig:
    name: str = "stackgate"
    ansible_dir: str = "ansible"
    state_dir: str = ".stackgate"


@dataclass
class CloudConfig:
    region: str = "northeurope"
    resource_group: str = "stackgate-rg"
    machine_class: str = "Standard_B2s"
    image: str = "Ubuntu2204"
    admin_username: str = "azureuser"
    os_disk_size_gb: int = 30
    os_disk_sku: str = "StandardSSD_LRS"
    custom_data: str = ""
    ingress_ports: list[int] = field(default_factory=lambda: [22, 80, 443])
    egress: str = "all"


@dataclass
class SSHSettings:
    public_key_path: str = "~/.ssh/id_ed25519.pub"
    private_key_path: str = "~/.ssh/id_ed25519"
    port: int = 22


@dataclass
class ConvergenceConfig:
    playbook: str = "playbook.yml"
    roles_dirs: list[str] = field(default_factory=lambda: ["roles"])
    inventory_path: str = "inventory/hosts"
    task_retries: int = 3
    extra_vars: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReadinessConfig:
    """Readiness probe budget.

    The probe waits ``initial_delay`` seconds, then makes up to
    ``max_attempts`` handshakes, each bounded by ``timeout`` seconds, with
    ``interval`` seconds between them.
    """

    initial_delay: float = 30.0
    timeout: float = 5.0
    interval: float = 10.0
    max_attempts: int = 30

    @property
    def upper_bound(self) -> float:
        """Longest the probe can take after the initial delay."""
        return self.max_attempts * (self.timeout + self.interval)

    def with_environment(self) -> "ReadinessConfig":
        """Return a copy with STACKGATE_PROBE_* environment overrides applied.

        Environment variables (all optional):
            STACKGATE_PROBE_INITIAL_DELAY
            STACKGATE_PROBE_TIMEOUT
            STACKGATE_PROBE_INTERVAL
            STACKGATE_PROBE_MAX_ATTEMPTS

        Raises:
            ConfigError: If an override is not a number
        """
        values = asdict(self)
        for name, caster in (
            ("initial_delay", float),
            ("timeout", float),
            ("interval", float),
            ("max_attempts", int),
        ):
            env_name = f"STACKGATE_PROBE_{name.upper()}"
            raw = os.getenv(env_name)
            if raw is None:
                continue
            try:
                values[name] = caster(raw)
            except ValueError as e:
                raise ConfigError(f"invalid value {raw!r}", field=env_name) from e
        return ReadinessConfig(**values)


@dataclass
class ApplicationConfig:
    domain_name: str = ""
    email: str = ""
    repo: str = ""
    app_dir: str = "~/app"

    @property
    def url(self) -> str | None:
        return f"https://{self.domain_name}" if self.domain_name else None


@dataclass
class DesiredStateConfig:
    """Complete stackgate configuration.

    Relative paths are resolved against ``project_dir``, the directory that
    holds the config file.
    """

    project: ProjectConfig = field(default_factory=ProjectConfig)
    cloud: CloudConfig = field(default_factory=CloudConfig)
    ssh: SSHSettings = field(default_factory=SSHSettings)
    convergence: ConvergenceConfig = field(default_factory=ConvergenceConfig)
    readiness: ReadinessConfig = field(default_factory=ReadinessConfig)
    application: ApplicationConfig = field(default_factory=ApplicationConfig)
    project_dir: Path = field(default_factory=Path.cwd)

    _SECTIONS = ("project", "cloud", "ssh", "convergence", "readiness", "application")

    @property
    def ansible_dir(self) -> Path:
        return (self.project_dir / self.project.ansible_dir).resolve()

    @property
    def state_dir(self) -> Path:
        return (self.project_dir / self.project.state_dir).resolve()

    @property
    def playbook_path(self) -> Path:
        return self.ansible_dir / self.convergence.playbook

    @property
    def inventory_path(self) -> Path:
        return self.ansible_dir / self.convergence.inventory_path

    @property
    def public_key_path(self) -> Path:
        return Path(self.ssh.public_key_path).expanduser()

    @property
    def private_key_path(self) -> Path:
        return Path(self.ssh.private_key_path).expanduser()

    def read_public_key(self) -> str:
        """Read the SSH public key referenced by the config.

        Raises:
            ConfigError: If the key cannot be read
        """
        try:
            return self.public_key_path.read_text().strip()
        except OSError as e:
            raise ConfigError(
                f"cannot read public key {self.public_key_path}: {e.strerror}",
                field="ssh.public_key_path",
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert to a TOML-ready dictionary (project_dir excluded)."""
        return {name: asdict(getattr(self, name)) for name in self._SECTIONS}

    @classmethod
    def from_dict(cls, data: dict[str, Any], project_dir: Path | None = None) -> "DesiredStateConfig":
        """Create from a parsed TOML document.

        Raises:
            ConfigError: On unknown sections or keys, or wrong value types
        """
        section_types = {
            "project": ProjectConfig,
            "cloud": CloudConfig,
            "ssh": SSHSettings,
            "convergence": ConvergenceConfig,
            "readiness": ReadinessConfig,
            "application": ApplicationConfig,
        }
        unknown = set(data) - set(section_types)
        if unknown:
            raise ConfigError(f"unknown section(s): {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {}
        for section, section_type in section_types.items():
            raw = data.get(section, {})
            if not isinstance(raw, dict):
                raise ConfigError("must be a table", field=section)
            known = {f.name: f for f in fields(section_type)}
            extra = set(raw) - set(known)
            if extra:
                name = sorted(extra)[0]
                raise ConfigError("unknown option", field=f"{section}.{name}")
            defaults = section_type()
            values: dict[str, Any] = {}
            for key, value in raw.items():
                expected = type(getattr(defaults, key))
                if expected is float and isinstance(value, int) and not isinstance(value, bool):
                    value = float(value)
                if not isinstance(value, expected) or isinstance(value, bool) != (expected is bool):
                    raise ConfigError(
                        f"expected {expected.__name__}, got {type(value).__name__}",
                        field=f"{section}.{key}",
                    )
                values[key] = _plain(value)
            kwargs[section] = section_type(**values)

        return cls(project_dir=project_dir or Path.cwd(), **kwargs)

    def validate(self, check_files: bool = True) -> None:
        """Validate every field, failing on the first problem.

        Args:
            check_files: Also check key files, playbook and role directories

        Raises:
            ConfigError: With the offending field name
        """
        if not _PROJECT_NAME_RE.match(self.project.name):
            raise ConfigError(
                "must be 2-40 lowercase letters, digits or hyphens", field="project.name"
            )

        cloud = self.cloud
        if not _REGION_RE.match(cloud.region):
            raise ConfigError(f"invalid region {cloud.region!r}", field="cloud.region")
        if not _RESOURCE_GROUP_RE.match(cloud.resource_group):
            raise ConfigError("invalid resource group name", field="cloud.resource_group")
        if not _MACHINE_CLASS_RE.match(cloud.machine_class):
            raise ConfigError(
                f"invalid machine class {cloud.machine_class!r}", field="cloud.machine_class"
            )
        if not cloud.image.strip():
            raise ConfigError("cannot be empty", field="cloud.image")
        if not _USERNAME_RE.match(cloud.admin_username):
            raise ConfigError("invalid login name", field="cloud.admin_username")
        if not 30 <= cloud.os_disk_size_gb <= 4095:
            raise ConfigError("must be between 30 and 4095", field="cloud.os_disk_size_gb")
        if cloud.os_disk_sku not in _DISK_SKUS:
            raise ConfigError(
                f"must be one of {', '.join(_DISK_SKUS)}", field="cloud.os_disk_sku"
            )
        if not cloud.ingress_ports:
            raise ConfigError("at least one port is required", field="cloud.ingress_ports")
        for port in cloud.ingress_ports:
            if not isinstance(port, int) or not 1 <= port <= 65535:
                raise ConfigError(f"invalid port {port!r}", field="cloud.ingress_ports")
        if len(set(cloud.ingress_ports)) != len(cloud.ingress_ports):
            raise ConfigError("duplicate ports", field="cloud.ingress_ports")
        if self.ssh.port not in cloud.ingress_ports:
            raise ConfigError(
                f"SSH port {self.ssh.port} is not open in cloud.ingress_ports",
                field="cloud.ingress_ports",
            )
        if cloud.egress not in ("all", "none"):
            raise ConfigError("must be 'all' or 'none'", field="cloud.egress")

        if not 1 <= self.ssh.port <= 65535:
            raise ConfigError("invalid port", field="ssh.port")

        readiness = self.readiness
        if readiness.initial_delay < 0:
            raise ConfigError("cannot be negative", field="readiness.initial_delay")
        if readiness.timeout <= 0:
            raise ConfigError("must be positive", field="readiness.timeout")
        if readiness.interval < 0:
            raise ConfigError("cannot be negative", field="readiness.interval")
        if readiness.max_attempts < 1:
            raise ConfigError("must be at least 1", field="readiness.max_attempts")

        if self.convergence.task_retries < 0:
            raise ConfigError("cannot be negative", field="convergence.task_retries")

        if check_files:
            self._validate_files()

    def _validate_files(self) -> None:
        if not self.public_key_path.is_file():
            raise ConfigError(f"key not found: {self.public_key_path}", field="ssh.public_key_path")
        if not self.private_key_path.is_file():
            raise ConfigError(
                f"key not found: {self.private_key_path}", field="ssh.private_key_path"
            )

        playbook = self.playbook_path
        if not playbook.is_file():
            raise ConfigError(f"playbook not found: {playbook}", field="convergence.playbook")
        try:
            with open(playbook) as f:
                plays = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"playbook is not valid YAML: {e}", field="convergence.playbook") from e
        if not isinstance(plays, list) or not plays:
            raise ConfigError("playbook must be a list of plays", field="convergence.playbook")

        for roles_dir in self.convergence.roles_dirs:
            if not (self.ansible_dir / roles_dir).is_dir():
                raise ConfigError(
                    f"directory not found: {self.ansible_dir / roles_dir}",
                    field="convergence.roles_dirs",
                )


def _plain(value: Any) -> Any:
    """Convert tomlkit containers into plain Python values."""
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


CONFIG_TEMPLATE = """\
# stackgate desired-state configuration
# Edit the values marked REPLACE before running `stackgate apply`.

[project]
name = "stackgate"
ansible_dir = "ansible"
state_dir = ".stackgate"

[cloud]
region = "northeurope"
resource_group = "stackgate-rg"
machine_class = "Standard_B2s"
image = "Ubuntu2204"
admin_username = "azureuser"
os_disk_size_gb = 30
os_disk_sku = "StandardSSD_LRS"
# Boot-time initialization script (cloud-init), optional
custom_data = ""
ingress_ports = [22, 80, 443]
egress = "all"

[ssh]
# REPLACE with your key pair
public_key_path = "~/.ssh/id_ed25519.pub"
private_key_path = "~/.ssh/id_ed25519"

[convergence]
playbook = "playbook.yml"
roles_dirs = ["roles"]
inventory_path = "inventory/hosts"
task_retries = 3

[convergence.extra_vars]

[readiness]
initial_delay = 30
timeout = 5
interval = 10
max_attempts = 30

[application]
# REPLACE with your domain and contact email
domain_name = "your-domain.com"
email = "you@example.com"
repo = ""
app_dir = "~/app"
"""


class ConfigManager:
    """Locate, load and write the stackgate config file."""

    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_NAME

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Absolute path to the config file (which may not exist yet)
        """
        if custom_path:
            return Path(custom_path).expanduser().resolve()
        return (Path.cwd() / cls.DEFAULT_CONFIG_FILE).resolve()

    @classmethod
    def load_config(cls, custom_path: str | None = None, check_files: bool = True) -> DesiredStateConfig:
        """Load and validate configuration.

        Args:
            custom_path: Custom config file path (optional)
            check_files: Also check key files and the Ansible payload

        Returns:
            Validated DesiredStateConfig with readiness environment overrides

        Raises:
            ConfigError: If the file is missing, malformed or invalid
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            raise ConfigError(
                f"Config file not found: {config_path}\n"
                "Run 'stackgate init' to create one from the template."
            )

        mode = config_path.stat().st_mode & 0o777
        if mode & 0o077:
            logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
            os.chmod(config_path, 0o600)

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read {config_path}: {e}") from e

        config = DesiredStateConfig.from_dict(data, project_dir=config_path.parent)
        config.readiness = config.readiness.with_environment()
        config.validate(check_files=check_files)

        logger.debug(f"Loaded config from: {config_path}")
        return config

    @classmethod
    def write_template(cls, custom_path: str | None = None) -> Path:
        """Write the commented config template if no config exists.

        Returns:
            Path to the config file

        Raises:
            ConfigError: If the file already exists or cannot be written
        """
        config_path = cls.get_config_path(custom_path)
        if config_path.exists():
            raise ConfigError(f"Config file already exists: {config_path}")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(CONFIG_TEMPLATE)
            os.chmod(config_path, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to write config template: {e}") from e
        return config_path

    @classmethod
    def set_value(cls, dotted_key: str, raw_value: str, custom_path: str | None = None) -> Any:
        """Set one ``section.key`` value, preserving comments and layout.

        The raw value is parsed as a TOML value when possible (numbers,
        booleans, arrays), otherwise stored as a string.

        Returns:
            The stored value

        Raises:
            ConfigError: If the key is unknown or the result is invalid
        """
        config_path = cls.get_config_path(custom_path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        section, _, key = dotted_key.partition(".")
        if not key:
            raise ConfigError("expected section.key", field=dotted_key)

        try:
            value = tomlkit.parse(f"v = {raw_value}")["v"]
        except ParseError:
            value = raw_value

        try:
            with open(config_path) as f:
                doc = tomlkit.load(f)
        except ParseError as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read {config_path}: {e}") from e
        if section not in doc:
            doc[section] = tomlkit.table()
        doc[section][key] = value

        # Validate the result before writing it out
        DesiredStateConfig.from_dict(_plain(doc.unwrap()), project_dir=config_path.parent).validate(
            check_files=False
        )

        temp_path = config_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

        return _plain(value.unwrap() if hasattr(value, "unwrap") else value)


__all__ = [
    "ApplicationConfig",
    "CloudConfig",
    "ConfigError",
    "ConfigManager",
    "ConvergenceConfig",
    "DesiredStateConfig",
    "ProjectConfig",
    "ReadinessConfig",
    "SSHSettings",
]
