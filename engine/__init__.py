"""
Engine module - Topology compilation and connectivity verification

Contains:
- topology: Wiring to VM registry compiler
- connectivity: Overlay connectivity verification
- vpc_setup: Per-server VPC provisioning
"""

from .topology import (
    TopologyCompiler, TopologyError, VMRegistry, VM, VMInterface, VMType,
    compile_topology, port_id_for_name, fill_gaps,
)
from .connectivity import (
    ConnectivityTester, ConnectivityTestConfig, ConnectivityReport,
    ConnectivityError, CheckResult,
)
from .vpc_setup import VPCSetup, VPCSetupError

__all__ = [
    'TopologyCompiler',
    'TopologyError',
    'VMRegistry',
    'VM',
    'VMInterface',
    'VMType',
    'compile_topology',
    'port_id_for_name',
    'fill_gaps',
    'ConnectivityTester',
    'ConnectivityTestConfig',
    'ConnectivityReport',
    'ConnectivityError',
    'CheckResult',
    'VPCSetup',
    'VPCSetupError',
]
