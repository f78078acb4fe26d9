"""
Overlay module - Fabric overlay state

Contains:
- models: Agent, VPC, attachment and peering records
- reader: Overlay state readers (snapshot file, kubectl)
"""

from .models import (
    OverlayError, Agent, VPC, VPCSubnet, VPCAttachment, VPCPeering, ExternalPeering,
)
from .reader import (
    OverlayStateReader, FileOverlayReader, KubectlOverlayReader, DEFAULT_NAMESPACE,
)

__all__ = [
    'OverlayError',
    'Agent',
    'VPC',
    'VPCSubnet',
    'VPCAttachment',
    'VPCPeering',
    'ExternalPeering',
    'OverlayStateReader',
    'FileOverlayReader',
    'KubectlOverlayReader',
    'DEFAULT_NAMESPACE',
]
