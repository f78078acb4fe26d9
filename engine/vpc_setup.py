"""
Per-Server VPC Setup

Gives every testable server its own VPC: creates (or updates) a VPC with a
single subnet and an attachment for the server's connection, then configures
the matching VLAN or bond on the server itself with hhnet.
"""

import logging
from typing import List
from dataclasses import dataclass

from overlay import OverlayError, OverlayStateReader, VPC, VPCSubnet, VPCAttachment
from ssh_client import SSHClientError
from wiring import Wiring, Connection, Unbundled, endpoints, server_ports

from .topology import VM, VMRegistry

logger = logging.getLogger(__name__)

HHNET = "/opt/bin/hhnet"
HHNET_TIMEOUT = 30
VLAN_BASE = 1000


class VPCSetupError(Exception):
    """Exception raised when a server VPC can't be set up."""
    pass


@dataclass
class ServerNetConfig:
    """Network configuration to apply on a server with hhnet."""
    name: str
    vm: VM
    args: List[str]

    @property
    def command(self) -> List[str]:
        return [HHNET] + self.args


def hhnet_args(conn: Connection, vlan: str) -> List[str]:
    """
    Build hhnet arguments for a server-facing connection.

    Unbundled connections get a VLAN interface on the single port, bundled
    and MCLAG connections a bond over all server ports.
    """
    ports = [port.name for port in server_ports(conn)]
    if isinstance(conn.spec, Unbundled):
        return ["vlan", vlan] + ports
    return ["bond", vlan] + ports


class VPCSetup:
    """
    Creates one VPC per server.

    Usage:
        VPCSetup(wiring, registry, reader, runner).run()
    """

    def __init__(self, wiring: Wiring, registry: VMRegistry, reader: OverlayStateReader, runner):
        self.wiring = wiring
        self.registry = registry
        self.reader = reader
        self.runner = runner

    def run(self) -> List[ServerNetConfig]:
        """
        Create VPCs and attachments, then configure server networking.

        Returns:
            Applied server network configurations

        Raises:
            VPCSetupError: On the first failure
        """
        netconfs = []
        idx = 1

        for device in self.wiring.servers:
            if device.is_control:
                continue

            vm = self.registry.get(device.name)
            if vm is None:
                raise VPCSetupError(f"No VM found for server {device.name}")

            conns = self._server_connections(device.name)
            if not conns:
                logger.info(f"Skipping server {device.name} (no connection)")
                continue
            if len(conns) > 1:
                logger.info(f"Skipping server {device.name} (multiple connections)")
                continue

            conn = conns[0]

            vlan = str(VLAN_BASE + idx)
            vpc = VPC(
                name=f"vpc-{idx}",
                subnets={
                    "default": VPCSubnet(
                        subnet=f"10.0.{idx}.0/24",
                        vlan=vlan,
                        dhcp_enable=True,
                        dhcp_start=f"10.0.{idx}.10",
                    ),
                },
            )
            attachment = VPCAttachment(
                name=f"{vpc.name}--{conn.name}",
                subnet=f"{vpc.name}/default",
                connection=conn.name,
            )

            logger.info(f"Creating VPC + attachment for server {device.name}: vpc={vpc.name} conn={conn.name}")

            try:
                self.reader.apply(vpc.to_object(self.reader.namespace))
            except OverlayError as e:
                raise VPCSetupError(f"Error creating/updating VPC {vpc.name}: {e}")

            try:
                self.reader.apply(attachment.to_object(self.reader.namespace))
            except OverlayError as e:
                raise VPCSetupError(f"Error creating/updating VPC attachment {attachment.name}: {e}")

            netconfs.append(ServerNetConfig(name=device.name, vm=vm, args=hhnet_args(conn, vlan)))
            idx += 1

        for netconf in netconfs:
            self._configure(netconf)

        return netconfs

    def _server_connections(self, name: str) -> List[Connection]:
        return [
            conn for conn in self.wiring.connections
            if conn.is_server_facing and name in endpoints(conn)[1]
        ]

    def _configure(self, netconf: ServerNetConfig) -> None:
        logger.info(f"Configuring networking for server {netconf.name}: {' '.join(netconf.args)}")

        for cmd in ([HHNET, "cleanup"], netconf.command):
            try:
                output, ok = self.runner.run(netconf.vm, cmd, HHNET_TIMEOUT)
            except SSHClientError as e:
                raise VPCSetupError(f"Error connecting to server {netconf.name}: {e}")

            if not ok:
                logger.warning(f"hhnet error on {netconf.name}: {output.strip()}")
                raise VPCSetupError(f"Error running {' '.join(cmd)} on server {netconf.name}")

        logger.info(f"Server {netconf.name} network configured: {output.strip()}")
