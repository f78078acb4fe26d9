"""
VLAB Configuration Loader

Loads the vlab.yaml configuration file: per-role VM sizing,
passthrough links, SSH key and base directory. Missing settings
fall back to defaults.
"""

import os
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict

import yaml

logger = logging.getLogger(__name__)

VM_SIZE_DEFAULT = "default"  # meaningful VM sizes for dev & testing
VM_SIZE_COMPACT = "compact"  # minimal working setup, applied on top of default
VM_SIZE_FULL = "full"  # full setup with more real switch resources, applied on top of default

VM_SIZES = (VM_SIZE_DEFAULT, VM_SIZE_COMPACT, VM_SIZE_FULL)

DEFAULT_BASEDIR = ".hhfab/vlab"
DEFAULT_SSH_KEY = "~/.ssh/id_ed25519"


class ConfigError(Exception):
    """Exception raised for configuration loading errors."""
    pass


@dataclass
class VMConfig:
    """VM resources. Zero means "not set"."""
    cpu: int = 0
    ram: int = 0  # MiB
    disk: int = 0  # GiB

    def defaults_from(self, other: "VMConfig") -> "VMConfig":
        """Return a copy with unset fields taken from other."""
        return VMConfig(
            cpu=self.cpu or other.cpu,
            ram=self.ram or other.ram,
            disk=self.disk or other.disk,
        )

    def override_by(self, other: "VMConfig") -> "VMConfig":
        """Return a copy with every field set in other replacing ours."""
        return VMConfig(
            cpu=other.cpu or self.cpu,
            ram=other.ram or self.ram,
            disk=other.disk or self.disk,
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


DEFAULT_CONTROL_VM = VMConfig(cpu=6, ram=6144, disk=100)
COMPACT_CONTROL_VM = VMConfig(cpu=4, ram=4096, disk=50)
FULL_CONTROL_VM = VMConfig(cpu=8, ram=16384, disk=250)

DEFAULT_SERVER_VM = VMConfig(cpu=2, ram=512, disk=10)
COMPACT_SERVER_VM = VMConfig(cpu=1)
FULL_SERVER_VM = VMConfig()

DEFAULT_SWITCH_VM = VMConfig(cpu=4, ram=5120, disk=50)
COMPACT_SWITCH_VM = VMConfig(cpu=3, ram=3584, disk=30)
FULL_SWITCH_VM = VMConfig(ram=8192)

SIZE_PRESETS = {
    VM_SIZE_DEFAULT: (DEFAULT_CONTROL_VM, DEFAULT_SERVER_VM, DEFAULT_SWITCH_VM),
    VM_SIZE_COMPACT: (COMPACT_CONTROL_VM, COMPACT_SERVER_VM, COMPACT_SWITCH_VM),
    VM_SIZE_FULL: (FULL_CONTROL_VM, FULL_SERVER_VM, FULL_SWITCH_VM),
}


@dataclass
class VMsConfig:
    """Per-role VM sizing."""
    control: VMConfig = field(default_factory=VMConfig)
    server: VMConfig = field(default_factory=VMConfig)
    switch: VMConfig = field(default_factory=VMConfig)

    def sized(self, size: str) -> "VMsConfig":
        """
        Resolve sizing for a size class.

        The user settings are completed from the default baseline first,
        then the selected size class overrides only what it specifies.

        Args:
            size: One of VM_SIZES

        Returns:
            New VMsConfig with the resolved values

        Raises:
            ConfigError: If the size class is unknown
        """
        if size not in SIZE_PRESETS:
            raise ConfigError(f"Unknown VM size '{size}', expected one of: {', '.join(VM_SIZES)}")

        control, server, switch = SIZE_PRESETS[size]
        return VMsConfig(
            control=self.control.defaults_from(DEFAULT_CONTROL_VM).override_by(control),
            server=self.server.defaults_from(DEFAULT_SERVER_VM).override_by(server),
            switch=self.switch.defaults_from(DEFAULT_SWITCH_VM).override_by(switch),
        )


@dataclass
class LinkConfig:
    """Passthrough settings for a single switch or server port."""
    pci_address: str = ""


@dataclass
class Config:
    """Complete VLAB configuration."""
    basedir: str = DEFAULT_BASEDIR
    ssh_key: str = DEFAULT_SSH_KEY
    vms: VMsConfig = field(default_factory=VMsConfig)
    links: Dict[str, LinkConfig] = field(default_factory=dict)


def load_config(path: Optional[str]) -> Config:
    """
    Load and parse the VLAB configuration file.

    Args:
        path: Path to vlab.yaml, None for an all-defaults configuration

    Returns:
        Config with defaults applied

    Raises:
        ConfigError: If the file cannot be loaded or contains invalid values
    """
    if path is None:
        return Config()

    path = os.path.expanduser(path)

    if not os.path.isfile(path):
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config file: {e}")
    except IOError as e:
        raise ConfigError(f"Failed to read config file: {e}")

    if not data:
        logger.warning(f"Config file {path} is empty, using defaults")
        return Config()

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a mapping")

    return parse_config(data)


def parse_config(data: Dict[str, Any]) -> Config:
    """Build a Config from parsed YAML data."""
    vms = data.get("vms") or {}
    if not isinstance(vms, dict):
        raise ConfigError("'vms' must be a mapping")

    raw_links = data.get("links") or {}
    if not isinstance(raw_links, dict):
        raise ConfigError("'links' must be a mapping")

    links = {}
    for port_name, link in raw_links.items():
        if not isinstance(link, dict):
            raise ConfigError(f"Link {port_name} must be a mapping")
        links[port_name] = LinkConfig(pci_address=str(link.get("pci", "") or ""))

    return Config(
        basedir=data.get("basedir", DEFAULT_BASEDIR),
        ssh_key=data.get("sshKey", DEFAULT_SSH_KEY),
        vms=VMsConfig(
            control=_parse_vm_config("control", vms.get("control")),
            server=_parse_vm_config("server", vms.get("server")),
            switch=_parse_vm_config("switch", vms.get("switch")),
        ),
        links=links,
    )


def _parse_vm_config(role: str, data: Optional[Dict[str, Any]]) -> VMConfig:
    if not data:
        return VMConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"vms.{role} must be a mapping")

    values = {}
    for key in ("cpu", "ram", "disk"):
        value = data.get(key, 0)
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"vms.{role}.{key} must be an integer, got {value!r}")
        if value < 0:
            raise ConfigError(f"vms.{role}.{key} can't be negative")
        values[key] = value

    return VMConfig(**values)
