"""
Topology Compiler

Turns the wiring into a VM Registry:
1. Resolve VM sizing for the selected size class
2. Assign dense VM IDs (control, then servers, then software switches)
3. Add the host management interface to control and server VMs
4. Expand every connection and add each link in both directions
5. Fill interface gaps with placeholders

The registry is built once and must not be modified afterwards.
"""

import os
import re
import logging
from typing import Dict, List, Iterator, Optional, Tuple, Union, Any
from dataclasses import dataclass, field

from vlab_config import Config, ConfigError, VMConfig, VM_SIZE_DEFAULT
from wiring import Wiring, Port, DeviceRole, WiringError, expand_links

logger = logging.getLogger(__name__)

SSH_PORT_BASE = 22000
KUBE_PORT = 6443
REGISTRY_PORT = 31000

IF_PORT_BASE = 30000
IF_PORT_VM_ID_MULT = 100
IF_PORT_PORT_ID_MULT = 1
MAX_IFACES = IF_PORT_VM_ID_MULT // IF_PORT_PORT_ID_MULT
MAX_VMS = 100  # VM id is a two-digit MAC octet

MAC_ADDR_TMPL = "0c:20:12:fe:%02d:%02d"
UUID_TMPL = "00000000-0000-0000-0000-%012d"

LOCALHOST = "127.0.0.1"
HOST_CONNECTION = "host"

_PORT_NAME_RULES = (
    ("Ethernet", 1),  # SONiC naming, Ethernet0 is the first front panel port
    ("port", 0),  # simplified server naming
    ("enp2s", 0),  # e1000 NIC naming on the server OS
)


class TopologyError(Exception):
    """Exception raised when the wiring can't be compiled into VMs."""
    pass


class VMType:
    CONTROL = "control"
    SERVER = "server"
    SWITCH_VS = "switch-vs"


@dataclass(frozen=True)
class UDPEndpoint:
    address: str
    port: int

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"


@dataclass(frozen=True)
class SocketTransport:
    """Point-to-point UDP socket link, remote is None for unpaired ports."""
    local: UDPEndpoint
    remote: Optional[UDPEndpoint] = None

    def to_netdev(self) -> str:
        netdev = f"socket,udp={self.local}"
        if self.remote is not None:
            netdev += f",localaddr={self.remote}"
        return netdev


@dataclass(frozen=True)
class HostForward:
    host_port: int
    guest_port: int


@dataclass(frozen=True)
class UserNetTransport:
    """User-mode networking with host port forwarding, used for management."""
    hostname: str
    net: str
    dhcp_start: str
    forwards: Tuple[HostForward, ...]
    restrict: bool = False

    def to_netdev(self) -> str:
        parts = ["user"]
        for fwd in self.forwards:
            parts.append(f"hostfwd=tcp:{LOCALHOST}:{fwd.host_port}-:{fwd.guest_port}")
        parts.extend([
            f"hostname={self.hostname}",
            "domainname=local",
            "dnssearch=local",
            f"net={self.net}",
            f"dhcpstart={self.dhcp_start}",
        ])
        if self.restrict:
            parts.append("restrict=yes")
        return ",".join(parts)


Transport = Union[SocketTransport, UserNetTransport]


@dataclass(frozen=True)
class VMInterface:
    """
    Interface descriptor. Holds a software transport, a passthrough PCI
    address, or nothing at all for a placeholder slot.
    """
    connection: str = ""
    transport: Optional[Transport] = None
    passthrough: str = ""

    @property
    def is_placeholder(self) -> bool:
        return self.transport is None and not self.passthrough

    @property
    def netdev(self) -> str:
        return self.transport.to_netdev() if self.transport is not None else ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "connection": self.connection,
            "netdev": self.netdev,
            "passthrough": self.passthrough,
        }


PLACEHOLDER = VMInterface()


class FileMarker:
    """Lifecycle marker backed by an empty file."""

    def __init__(self, path: str):
        self.path = path

    def is_set(self) -> bool:
        return os.path.isfile(self.path)

    def mark(self) -> None:
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, "w", encoding="utf-8"):
            pass

    def __repr__(self) -> str:
        return f"FileMarker({self.path})"


@dataclass
class VM:
    id: int
    name: str
    type: str
    config: VMConfig
    basedir: str = ""
    interfaces: Dict[int, VMInterface] = field(default_factory=dict)

    @property
    def ready(self) -> FileMarker:
        return FileMarker(os.path.join(self.basedir, "ready"))

    @property
    def installed(self) -> FileMarker:
        return FileMarker(os.path.join(self.basedir, "installed"))

    @property
    def ssh_port(self) -> int:
        return ssh_port_for(self.id)

    @property
    def uuid(self) -> str:
        return UUID_TMPL % self.id

    def mac_for(self, iface: int) -> str:
        return MAC_ADDR_TMPL % (self.id, iface)

    def iface_port_for(self, iface: int) -> int:
        return IF_PORT_BASE + self.id * IF_PORT_VM_ID_MULT + iface * IF_PORT_PORT_ID_MULT

    def sorted_interfaces(self) -> List[Tuple[int, VMInterface]]:
        return sorted(self.interfaces.items())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "uuid": self.uuid,
            "ssh_port": self.ssh_port,
            "config": self.config.to_dict(),
            "basedir": self.basedir,
            "interfaces": [
                dict(index=idx, mac=self.mac_for(idx), **iface.to_dict())
                for idx, iface in self.sorted_interfaces()
            ],
        }


def ssh_port_for(vm_id: int) -> int:
    return SSH_PORT_BASE + vm_id


def port_id_for_name(name: str) -> int:
    """
    Map a local port name to a VM interface index.

    Management0* maps to 0, EthernetN to N+1, portN to N and enp2sN to N.

    Raises:
        TopologyError: For unsupported names or non-numeric suffixes
    """
    if name.startswith("Management0"):
        return 0

    for prefix, offset in _PORT_NAME_RULES:
        if name.startswith(prefix):
            suffix = name[len(prefix):]
            if not re.fullmatch(r"\d+", suffix):
                raise TopologyError(f"Error converting port name '{name}' to port id")
            return int(suffix) + offset

    raise TopologyError(f"Unsupported port name '{name}'")


def fill_gaps(interfaces: Dict[int, VMInterface]) -> None:
    """Insert placeholders so the indexes are dense from 0 to the max used."""
    if not interfaces:
        return

    for idx in range(max(interfaces) + 1):
        if idx not in interfaces:
            interfaces[idx] = PLACEHOLDER


class VMRegistry:
    """
    VMs addressed by their ID, with a name index on top.

    Connections and VPCs are never referenced from here; callers look them
    up by name in the wiring or overlay state when they need them.
    """

    def __init__(self, vms: List[VM]):
        self._vms = list(vms)
        self._by_name = {vm.name: vm.id for vm in self._vms}

    def __iter__(self) -> Iterator[VM]:
        return iter(self._vms)

    def __len__(self) -> int:
        return len(self._vms)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Optional[VM]:
        vm_id = self._by_name.get(name)
        return self._vms[vm_id] if vm_id is not None else None

    def by_id(self, vm_id: int) -> VM:
        return self._vms[vm_id]

    def control(self) -> VM:
        return self._vms[0]

    def to_dict(self) -> Dict[str, Any]:
        return {"vms": [vm.to_dict() for vm in self._vms]}

    def log_overview(self) -> None:
        for vm in self._vms:
            logger.debug(f"VM id={vm.id} name={vm.name} type={vm.type}")
            for idx, iface in vm.sorted_interfaces():
                logger.debug(
                    f">>> Interface id={idx} netdev={iface.netdev} "
                    f"passthrough={iface.passthrough} conn={iface.connection}"
                )


class TopologyCompiler:
    """
    Compiles wiring and VLAB configuration into a VM Registry.

    Usage:
        registry = TopologyCompiler(cfg, wiring, basedir).compile()

    Any problem aborts compilation with a TopologyError and no registry.
    """

    def __init__(self, cfg: Config, wiring: Wiring, basedir: str, size: str = VM_SIZE_DEFAULT):
        self.cfg = cfg
        self.wiring = wiring
        self.basedir = basedir
        self.size = size

        self._vms: List[VM] = []
        self._by_name: Dict[str, VM] = {}
        self._hw_switches = set()

    def compile(self) -> VMRegistry:
        self._vms = []
        self._by_name = {}
        self._hw_switches = set()

        try:
            vms_cfg = self.cfg.vms.sized(self.size)
        except ConfigError as e:
            raise TopologyError(f"Error sizing VMs: {e}")

        self._add_control(vms_cfg.control)
        self._add_servers(vms_cfg.server)
        self._add_switches(vms_cfg.switch)

        for vm in self._vms:
            vm.basedir = os.path.join(self.basedir, vm.name)

        for conn in self.wiring.connections:
            try:
                links = expand_links(conn)
            except WiringError as e:
                raise TopologyError(str(e))

            for local, remote in links:
                self.add_link(local, remote, conn.name)
                if remote is not None:
                    self.add_link(remote, local, conn.name)

        for vm in self._vms:
            fill_gaps(vm.interfaces)

        registry = VMRegistry(self._vms)

        logger.info(
            f"Compiled {len(registry)} VMs "
            f"({sum(len(vm.interfaces) for vm in registry)} interfaces) from wiring"
        )
        registry.log_overview()

        return registry

    def _add_control(self, vm_cfg: VMConfig) -> None:
        controls = [s for s in self.wiring.servers if s.role == DeviceRole.CONTROL]
        if not controls:
            raise TopologyError("Control node is required")
        if len(controls) > 1:
            raise TopologyError(
                f"Multiple control nodes not supported: {', '.join(s.name for s in controls)}"
            )

        vm = self._new_vm(controls[0].name, VMType.CONTROL, vm_cfg)
        vm.interfaces[0] = VMInterface(
            connection=HOST_CONNECTION,
            transport=self._management_transport(vm, (
                HostForward(ssh_port_for(vm.id), 22),
                HostForward(KUBE_PORT, KUBE_PORT),
                HostForward(REGISTRY_PORT, REGISTRY_PORT),
            ), restrict=False),
        )

    def _add_servers(self, vm_cfg: VMConfig) -> None:
        for server in self.wiring.servers:
            if server.role != DeviceRole.SERVER:
                continue

            vm = self._new_vm(server.name, VMType.SERVER, vm_cfg)
            vm.interfaces[0] = VMInterface(
                connection=HOST_CONNECTION,
                transport=self._management_transport(vm, (
                    HostForward(ssh_port_for(vm.id), 22),
                ), restrict=True),
            )

    def _add_switches(self, vm_cfg: VMConfig) -> None:
        for switch in self.wiring.switches:
            if switch.role == DeviceRole.SWITCH_HW:
                if switch.name in self._by_name or switch.name in self._hw_switches:
                    raise TopologyError(f"Duplicate server/switch name: {switch.name}")
                logger.debug(f"Switch {switch.name} is a hardware switch, no VM created")
                self._hw_switches.add(switch.name)
                continue

            self._new_vm(switch.name, VMType.SWITCH_VS, vm_cfg)

    def _new_vm(self, name: str, vm_type: str, vm_cfg: VMConfig) -> VM:
        if name in self._by_name or name in self._hw_switches:
            raise TopologyError(f"Duplicate server/switch name: {name}")
        if len(self._vms) >= MAX_VMS:
            raise TopologyError(f"Too many VMs, can't add {name}: max is {MAX_VMS}")

        vm = VM(id=len(self._vms), name=name, type=vm_type, config=vm_cfg)
        self._vms.append(vm)
        self._by_name[name] = vm
        return vm

    @staticmethod
    def _management_transport(vm: VM, forwards: Tuple[HostForward, ...], restrict: bool) -> UserNetTransport:
        return UserNetTransport(
            hostname=vm.name,
            net=f"172.31.{vm.id}.0/24",
            dhcp_start=f"172.31.{vm.id}.10",
            forwards=forwards,
            restrict=restrict,
        )

    def add_link(self, local: Port, remote: Optional[Port], conn: str) -> None:
        """
        Add the interface for the local side of a link.

        Called twice per link with the arguments swapped, so each side
        records its own end.

        Args:
            local: Port getting the interface
            remote: Port on the other end, None for NAT links
            conn: Connection name recorded on the interface

        Raises:
            TopologyError: Unknown device, bad port name, index already used
                or passthrough without a PCI address
        """
        if local is None:
            raise TopologyError("Local port can't be empty")

        if local.device in self._hw_switches:
            return

        local_vm = self._by_name.get(local.device)
        if local_vm is None:
            raise TopologyError(f"{local.device} does not exist")

        local_id = self._iface_index(local, local_vm)

        remote_vm = None
        remote_id = -1
        if remote is not None and remote.device not in self._hw_switches:
            remote_vm = self._by_name.get(remote.device)
            if remote_vm is None:
                raise TopologyError(f"Dest {remote.device} does not exist for {local.port_name}")
            remote_id = self._iface_index(remote, remote_vm)

        if local_id in local_vm.interfaces:
            raise TopologyError(
                f"{local.device} already has interface {local_id}, can't add {local.port_name}"
            )

        link_cfg = self.cfg.links.get(local.port_name)
        if link_cfg is not None:
            if not link_cfg.pci_address:
                raise TopologyError(f"PCI address required for {local.port_name}")

            local_vm.interfaces[local_id] = VMInterface(connection=conn, passthrough=link_cfg.pci_address)
            return

        remote_endpoint = None
        if remote_vm is not None:
            remote_endpoint = UDPEndpoint(LOCALHOST, remote_vm.iface_port_for(remote_id))

        local_vm.interfaces[local_id] = VMInterface(
            connection=conn,
            transport=SocketTransport(
                local=UDPEndpoint(LOCALHOST, local_vm.iface_port_for(local_id)),
                remote=remote_endpoint,
            ),
        )

    @staticmethod
    def _iface_index(port: Port, vm: VM) -> int:
        idx = port_id_for_name(port.name)
        if idx >= MAX_IFACES:
            raise TopologyError(f"Port {port.port_name} maps to interface {idx} on {vm.name}, max is {MAX_IFACES - 1}")
        return idx


def compile_topology(cfg: Config, wiring: Wiring, basedir: str, size: str = VM_SIZE_DEFAULT) -> VMRegistry:
    """Convenience wrapper around TopologyCompiler."""
    return TopologyCompiler(cfg, wiring, basedir, size=size).compile()
