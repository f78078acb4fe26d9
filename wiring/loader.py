"""
Wiring Loader

Loads a multi-document YAML wiring file made of Server, Switch and
Connection objects and builds the Wiring model from it.
"""

import os
import logging
from typing import Any, Dict, List

import yaml

from .model import (
    Wiring, Device, DeviceRole, Port, Connection, WiringError,
    ServerLink, SwitchPairLink, FabricLink, NATLink,
    Unbundled, Bundled, MCLAG, Management, MCLAGDomain, NAT, Fabric, VPCLoopback,
)

logger = logging.getLogger(__name__)

SERVER_TYPE_CONTROL = "control"
SERVER_TYPE_DEFAULT = "default"

SWITCH_TYPE_VS = "vs"
SWITCH_TYPE_HW = "hw"

VARIANT_KEYS = (
    "unbundled", "bundled", "mclag", "mclagDomain",
    "management", "nat", "fabric", "vpcLoopback",
)


def load_wiring(path: str) -> Wiring:
    """
    Load and parse a wiring file.

    Args:
        path: Path to the wiring YAML file

    Returns:
        Parsed Wiring

    Raises:
        WiringError: If the file cannot be read or contains invalid objects
    """
    path = os.path.expanduser(path)

    if not os.path.isfile(path):
        raise WiringError(f"Wiring file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            docs = [doc for doc in yaml.safe_load_all(f) if doc]
    except yaml.YAMLError as e:
        raise WiringError(f"Failed to parse wiring file: {e}")
    except IOError as e:
        raise WiringError(f"Failed to read wiring file: {e}")

    wiring = parse_wiring(docs)

    summary = ", ".join(f"{count} {name}" for name, count in wiring.summary().items())
    logger.info(f"Loaded wiring from {path}: {summary}")

    return wiring


def parse_wiring(docs: List[Dict[str, Any]]) -> Wiring:
    """Build a Wiring from already parsed objects, keeping their order."""
    wiring = Wiring()

    for doc in docs:
        if not isinstance(doc, dict):
            raise WiringError(f"Wiring object must be a mapping, got {type(doc).__name__}")

        kind = doc.get("kind")
        name = (doc.get("metadata") or {}).get("name")
        spec = doc.get("spec") or {}

        if kind not in ("Server", "Switch", "Connection"):
            logger.debug(f"Ignoring wiring object of kind {kind} ({name})")
            continue

        if not name:
            raise WiringError(f"{kind} object without metadata.name")

        if kind == "Server":
            wiring.servers.append(_parse_server(name, spec))
        elif kind == "Switch":
            wiring.switches.append(_parse_switch(name, spec))
        else:
            wiring.connections.append(_parse_connection(name, spec))

    return wiring


def _parse_server(name: str, spec: Dict[str, Any]) -> Device:
    server_type = spec.get("type") or SERVER_TYPE_DEFAULT
    if server_type == SERVER_TYPE_CONTROL:
        return Device(name=name, role=DeviceRole.CONTROL)
    if server_type == SERVER_TYPE_DEFAULT:
        return Device(name=name, role=DeviceRole.SERVER)
    raise WiringError(f"Server {name} has unsupported type '{server_type}'")


def _parse_switch(name: str, spec: Dict[str, Any]) -> Device:
    switch_type = spec.get("type") or SWITCH_TYPE_VS
    if switch_type == SWITCH_TYPE_VS:
        return Device(name=name, role=DeviceRole.SWITCH_VS)
    if switch_type == SWITCH_TYPE_HW:
        return Device(name=name, role=DeviceRole.SWITCH_HW)
    raise WiringError(f"Switch {name} has unsupported type '{switch_type}'")


def _parse_connection(name: str, spec: Dict[str, Any]) -> Connection:
    present = [key for key in VARIANT_KEYS if spec.get(key) is not None]
    if len(present) != 1:
        raise WiringError(
            f"Connection {name} must define exactly one of {', '.join(VARIANT_KEYS)}, "
            f"found {present or 'none'}"
        )

    key = present[0]
    body = spec[key]

    try:
        if key == "unbundled":
            variant = Unbundled(link=_server_link(body["link"]))
        elif key == "bundled":
            variant = Bundled(links=tuple(_server_link(l) for l in body["links"]))
        elif key == "mclag":
            variant = MCLAG(links=tuple(_server_link(l) for l in body["links"]))
        elif key == "management":
            variant = Management(link=_server_link(body["link"]))
        elif key == "mclagDomain":
            variant = MCLAGDomain(
                peer_links=tuple(_switch_pair(l) for l in body.get("peerLinks") or []),
                session_links=tuple(_switch_pair(l) for l in body.get("sessionLinks") or []),
            )
        elif key == "nat":
            variant = NAT(link=NATLink(switch=_port(body["link"]["switch"])))
        elif key == "fabric":
            variant = Fabric(links=tuple(
                FabricLink(spine=_port(l["spine"]), leaf=_port(l["leaf"])) for l in body["links"]
            ))
        else:
            variant = VPCLoopback(links=tuple(_switch_pair(l) for l in body["links"]))
    except (KeyError, TypeError) as e:
        raise WiringError(f"Connection {name} has malformed {key} section: {e}")

    return Connection(name=name, spec=variant)


def _port(data: Any) -> Port:
    if isinstance(data, dict):
        data = data.get("port")
    return Port.parse(data)


def _server_link(data: Dict[str, Any]) -> ServerLink:
    return ServerLink(server=_port(data["server"]), switch=_port(data["switch"]))


def _switch_pair(data: Dict[str, Any]) -> SwitchPairLink:
    return SwitchPairLink(switch1=_port(data["switch1"]), switch2=_port(data["switch2"]))
