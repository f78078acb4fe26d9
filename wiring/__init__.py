"""
Wiring module - Fabric wiring model

Contains:
- model: Devices, ports and connection variants
- loader: YAML wiring file loader
"""

from .model import (
    Wiring, Device, DeviceRole, Port, Connection, WiringError,
    ServerLink, SwitchPairLink, FabricLink, NATLink,
    Unbundled, Bundled, MCLAG, Management, MCLAGDomain, NAT, Fabric, VPCLoopback,
    expand_links, endpoints, server_ports,
)
from .loader import load_wiring, parse_wiring

__all__ = [
    'Wiring',
    'Device',
    'DeviceRole',
    'Port',
    'Connection',
    'WiringError',
    'ServerLink',
    'SwitchPairLink',
    'FabricLink',
    'NATLink',
    'Unbundled',
    'Bundled',
    'MCLAG',
    'Management',
    'MCLAGDomain',
    'NAT',
    'Fabric',
    'VPCLoopback',
    'expand_links',
    'endpoints',
    'server_ports',
    'load_wiring',
    'parse_wiring',
]
