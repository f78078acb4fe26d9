"""
Wiring Model

Declarative description of the fabric: devices (control node, servers,
switches) and the typed connections between their ports.

Every connection carries exactly one variant. expand_links() is the single
place where variants are turned into (local, remote) port pairs.
"""

import logging
from typing import Dict, List, Optional, Tuple, Union
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class WiringError(Exception):
    """Exception raised for invalid wiring data."""
    pass


class DeviceRole:
    """Device roles known to the wiring model."""
    CONTROL = "control"
    SERVER = "server"
    SWITCH_VS = "switch-vs"
    SWITCH_HW = "switch-hw"


CONNECTION_TYPE_UNBUNDLED = "unbundled"
CONNECTION_TYPE_BUNDLED = "bundled"
CONNECTION_TYPE_MCLAG = "mclag"
CONNECTION_TYPE_MCLAG_DOMAIN = "mclag-domain"
CONNECTION_TYPE_MANAGEMENT = "management"
CONNECTION_TYPE_NAT = "nat"
CONNECTION_TYPE_FABRIC = "fabric"
CONNECTION_TYPE_VPC_LOOPBACK = "vpc-loopback"

# Connection types that attach a single server to the fabric
SERVER_FACING_TYPES = (
    CONNECTION_TYPE_UNBUNDLED,
    CONNECTION_TYPE_BUNDLED,
    CONNECTION_TYPE_MCLAG,
)


@dataclass(frozen=True)
class Device:
    """A device declared in the wiring."""
    name: str
    role: str

    @property
    def is_control(self) -> bool:
        return self.role == DeviceRole.CONTROL


@dataclass(frozen=True)
class Port:
    """A device port, written as "device/port" in the wiring."""
    device: str
    name: str

    @classmethod
    def parse(cls, value: str) -> "Port":
        """
        Parse a "device/port" string.

        Everything after the first slash is the local port name, so
        "server-1/nic0/port1" is port "nic0/port1" on "server-1".

        Raises:
            WiringError: If the value has no device or no port part
        """
        if not isinstance(value, str) or "/" not in value:
            raise WiringError(f"Invalid port '{value}', expected 'device/port'")

        device, name = value.split("/", 1)
        if not device or not name:
            raise WiringError(f"Invalid port '{value}', expected 'device/port'")

        return cls(device=device, name=name)

    @property
    def port_name(self) -> str:
        return f"{self.device}/{self.name}"

    def __str__(self) -> str:
        return self.port_name


@dataclass(frozen=True)
class ServerLink:
    server: Port
    switch: Port


@dataclass(frozen=True)
class SwitchPairLink:
    switch1: Port
    switch2: Port


@dataclass(frozen=True)
class FabricLink:
    spine: Port
    leaf: Port


@dataclass(frozen=True)
class NATLink:
    switch: Port


@dataclass(frozen=True)
class Unbundled:
    link: ServerLink
    type_name = CONNECTION_TYPE_UNBUNDLED


@dataclass(frozen=True)
class Bundled:
    links: Tuple[ServerLink, ...]
    type_name = CONNECTION_TYPE_BUNDLED


@dataclass(frozen=True)
class MCLAG:
    links: Tuple[ServerLink, ...]
    type_name = CONNECTION_TYPE_MCLAG


@dataclass(frozen=True)
class Management:
    link: ServerLink
    type_name = CONNECTION_TYPE_MANAGEMENT


@dataclass(frozen=True)
class MCLAGDomain:
    peer_links: Tuple[SwitchPairLink, ...]
    session_links: Tuple[SwitchPairLink, ...]
    type_name = CONNECTION_TYPE_MCLAG_DOMAIN


@dataclass(frozen=True)
class NAT:
    link: NATLink
    type_name = CONNECTION_TYPE_NAT


@dataclass(frozen=True)
class Fabric:
    links: Tuple[FabricLink, ...]
    type_name = CONNECTION_TYPE_FABRIC


@dataclass(frozen=True)
class VPCLoopback:
    links: Tuple[SwitchPairLink, ...]
    type_name = CONNECTION_TYPE_VPC_LOOPBACK


ConnectionVariant = Union[
    Unbundled, Bundled, MCLAG, Management, MCLAGDomain, NAT, Fabric, VPCLoopback
]


@dataclass(frozen=True)
class Connection:
    """A named connection holding exactly one variant."""
    name: str
    spec: ConnectionVariant

    @property
    def type_name(self) -> str:
        return self.spec.type_name

    @property
    def is_server_facing(self) -> bool:
        return self.type_name in SERVER_FACING_TYPES


LinkPair = Tuple[Port, Optional[Port]]


def expand_links(conn: Connection) -> List[LinkPair]:
    """
    Expand a connection into (local, remote) port pairs.

    NAT links have no remote endpoint, so their remote side is None.

    Args:
        conn: Connection to expand

    Returns:
        List of port pairs, never empty

    Raises:
        WiringError: If the variant is unknown or declares no links
    """
    spec = conn.spec
    pairs: List[LinkPair] = []

    if isinstance(spec, Unbundled):
        pairs.append((spec.link.server, spec.link.switch))
    elif isinstance(spec, (Bundled, MCLAG)):
        for link in spec.links:
            pairs.append((link.server, link.switch))
    elif isinstance(spec, Management):
        pairs.append((spec.link.server, spec.link.switch))
    elif isinstance(spec, MCLAGDomain):
        for link in spec.peer_links:
            pairs.append((link.switch1, link.switch2))
        for link in spec.session_links:
            pairs.append((link.switch1, link.switch2))
    elif isinstance(spec, NAT):
        pairs.append((spec.link.switch, None))
    elif isinstance(spec, Fabric):
        for link in spec.links:
            pairs.append((link.spine, link.leaf))
    elif isinstance(spec, VPCLoopback):
        for link in spec.links:
            pairs.append((link.switch1, link.switch2))
    else:
        raise WiringError(f"Unsupported connection type for {conn.name}: {type(spec).__name__}")

    if not pairs:
        raise WiringError(f"Connection {conn.name} has no links")

    return pairs


def endpoints(conn: Connection) -> Tuple[List[str], List[str]]:
    """
    Get the switch and server device names a connection touches.

    Returns:
        Tuple of (switches, servers), each sorted and unique
    """
    spec = conn.spec
    switches = set()
    servers = set()

    if isinstance(spec, (Unbundled, Management)):
        servers.add(spec.link.server.device)
        switches.add(spec.link.switch.device)
    elif isinstance(spec, (Bundled, MCLAG)):
        for link in spec.links:
            servers.add(link.server.device)
            switches.add(link.switch.device)
    else:
        for local, remote in expand_links(conn):
            switches.add(local.device)
            if remote is not None:
                switches.add(remote.device)

    return sorted(switches), sorted(servers)


def server_ports(conn: Connection) -> List[Port]:
    """Server-side ports of a server-facing connection, in declaration order."""
    spec = conn.spec
    if isinstance(spec, Unbundled):
        return [spec.link.server]
    if isinstance(spec, (Bundled, MCLAG)):
        return [link.server for link in spec.links]
    return []


@dataclass
class Wiring:
    """
    Complete wiring of a fabric.

    Collections keep the order in which devices and connections were
    declared; several compilation passes rely on it.
    """
    servers: List[Device] = field(default_factory=list)
    switches: List[Device] = field(default_factory=list)
    connections: List[Connection] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "servers": len(self.servers),
            "switches": len(self.switches),
            "connections": len(self.connections),
        }
