"""
Overlay Objects

Typed records for the overlay state read from the fabric control plane:
agents, VPCs, VPC attachments, VPC peerings and external peerings.
Each record is built from a Kubernetes-style object dict.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional, Tuple
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_SUBNET = "default"


class OverlayError(Exception):
    """Exception raised for missing or malformed overlay objects."""
    pass


def _meta(obj: Dict[str, Any]) -> Dict[str, Any]:
    meta = obj.get("metadata") or {}
    if not meta.get("name"):
        raise OverlayError(f"{obj.get('kind', 'Object')} without metadata.name")
    return meta


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp, returning an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise OverlayError(f"Invalid timestamp '{value}'")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Agent:
    """Per-switch agent status."""
    name: str
    generation: int = 0
    last_heartbeat: Optional[datetime] = None
    last_applied_gen: int = 0

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "Agent":
        meta = _meta(obj)
        status = obj.get("status") or {}
        return cls(
            name=meta["name"],
            generation=int(meta.get("generation", 0) or 0),
            last_heartbeat=parse_timestamp(status.get("lastHeartbeat")),
            last_applied_gen=int(status.get("lastAppliedGen", 0) or 0),
        )


@dataclass
class VPCSubnet:
    subnet: str
    vlan: str = ""
    dhcp_enable: bool = False
    dhcp_start: str = ""

    def to_spec(self) -> Dict[str, Any]:
        dhcp: Dict[str, Any] = {"enable": self.dhcp_enable}
        if self.dhcp_start:
            dhcp["range"] = {"start": self.dhcp_start}
        return {"subnet": self.subnet, "vlan": self.vlan, "dhcp": dhcp}


@dataclass
class VPC:
    name: str
    subnets: Dict[str, VPCSubnet] = field(default_factory=dict)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "VPC":
        meta = _meta(obj)
        spec = obj.get("spec") or {}

        subnets = {}
        for subnet_name, data in (spec.get("subnets") or {}).items():
            data = data or {}
            dhcp = data.get("dhcp") or {}
            subnets[subnet_name] = VPCSubnet(
                subnet=data.get("subnet", ""),
                vlan=str(data.get("vlan", "") or ""),
                dhcp_enable=bool(dhcp.get("enable", False)),
                dhcp_start=(dhcp.get("range") or {}).get("start", ""),
            )

        return cls(name=meta["name"], subnets=subnets)

    def to_object(self, namespace: str) -> Dict[str, Any]:
        return {
            "apiVersion": "vpc.githedgehog.com/v1alpha2",
            "kind": "VPC",
            "metadata": {"name": self.name, "namespace": namespace},
            "spec": {"subnets": {name: s.to_spec() for name, s in self.subnets.items()}},
        }


@dataclass
class VPCAttachment:
    """Binds a connection to a VPC subnet, written as "vpc/subnet"."""
    name: str
    subnet: str
    connection: str

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "VPCAttachment":
        meta = _meta(obj)
        spec = obj.get("spec") or {}
        return cls(
            name=meta["name"],
            subnet=spec.get("subnet", ""),
            connection=spec.get("connection", ""),
        )

    @property
    def vpc_name(self) -> str:
        return self.subnet.split("/", 1)[0]

    @property
    def subnet_name(self) -> str:
        parts = self.subnet.split("/", 1)
        return parts[1] if len(parts) == 2 and parts[1] else DEFAULT_SUBNET

    def to_object(self, namespace: str) -> Dict[str, Any]:
        return {
            "apiVersion": "vpc.githedgehog.com/v1alpha2",
            "kind": "VPCAttachment",
            "metadata": {"name": self.name, "namespace": namespace},
            "spec": {"subnet": self.subnet, "connection": self.connection},
        }


@dataclass
class VPCPeering:
    name: str
    permit: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "VPCPeering":
        meta = _meta(obj)
        spec = obj.get("spec") or {}
        return cls(name=meta["name"], permit=list(spec.get("permit") or []))

    def vpcs(self) -> Tuple[str, str]:
        """
        Get the two peered VPC names, sorted.

        Raises:
            OverlayError: Unless the peering permits exactly two VPCs
        """
        if len(self.permit) != 1:
            raise OverlayError(f"VPC peering {self.name} must have exactly one permit entry")

        names = sorted((self.permit[0] or {}).keys())
        if len(names) != 2:
            raise OverlayError(f"VPC peering {self.name} must permit exactly two VPCs, got {names}")

        return names[0], names[1]


@dataclass
class ExternalPeering:
    name: str
    vpc: str
    subnets: List[str]
    external: str
    prefixes: List[str]

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "ExternalPeering":
        meta = _meta(obj)
        permit = (obj.get("spec") or {}).get("permit") or {}
        vpc = permit.get("vpc") or {}
        external = permit.get("external") or {}
        return cls(
            name=meta["name"],
            vpc=vpc.get("name", ""),
            subnets=list(vpc.get("subnets") or []),
            external=external.get("name", ""),
            prefixes=[p.get("prefix", "") for p in external.get("prefixes") or []],
        )
