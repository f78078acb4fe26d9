"""
Overlay State Reader

Lists overlay objects (agents, VPCs, attachments, peerings) from the
fabric control plane, scoped to one namespace.

Implementations:
- FileOverlayReader: YAML/JSON snapshot of objects, for offline runs and tests
- KubectlOverlayReader: live cluster through kubectl
"""

import os
import json
import logging
import subprocess
from typing import Dict, List, Any, Callable, Optional, TypeVar

import yaml

from .models import (
    OverlayError, Agent, VPC, VPCAttachment, VPCPeering, ExternalPeering,
)

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"

T = TypeVar("T")


class OverlayStateReader:
    """
    Base class for overlay state readers.

    Subclasses implement list_objects() and apply(); the typed list_*
    helpers are shared.
    """

    def __init__(self, namespace: str = DEFAULT_NAMESPACE):
        self.namespace = namespace

    def list_objects(self, kind: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def apply(self, obj: Dict[str, Any]) -> None:
        """Create or update an object."""
        raise NotImplementedError

    def list_agents(self) -> List[Agent]:
        return self._list("Agent", Agent.from_object)

    def list_vpcs(self) -> List[VPC]:
        return self._list("VPC", VPC.from_object)

    def list_vpc_attachments(self) -> List[VPCAttachment]:
        return self._list("VPCAttachment", VPCAttachment.from_object)

    def list_vpc_peerings(self) -> List[VPCPeering]:
        return self._list("VPCPeering", VPCPeering.from_object)

    def list_external_peerings(self) -> List[ExternalPeering]:
        return self._list("ExternalPeering", ExternalPeering.from_object)

    def _list(self, kind: str, parse: Callable[[Dict[str, Any]], T]) -> List[T]:
        items = []
        for obj in self.list_objects(kind):
            try:
                items.append(parse(obj))
            except (TypeError, ValueError, AttributeError) as e:
                raise OverlayError(f"Malformed {kind} object: {e}")

        logger.debug(f"Listed {len(items)} {kind} objects in namespace {self.namespace}")
        return items


class FileOverlayReader(OverlayStateReader):
    """
    Reads objects from a multi-document YAML (or JSON) snapshot.

    A document may be a single object or a List with items. Objects without
    a namespace belong to the default namespace. Applied objects are kept in
    memory and shadow the snapshot entries with the same kind and name.
    """

    def __init__(self, path: str, namespace: str = DEFAULT_NAMESPACE):
        super().__init__(namespace)
        self.path = os.path.expanduser(path)
        self._objects = self._load()

    def _load(self) -> List[Dict[str, Any]]:
        if not os.path.isfile(self.path):
            raise OverlayError(f"Overlay snapshot not found: {self.path}")

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                docs = [doc for doc in yaml.safe_load_all(f) if doc]
        except yaml.YAMLError as e:
            raise OverlayError(f"Failed to parse overlay snapshot: {e}")
        except IOError as e:
            raise OverlayError(f"Failed to read overlay snapshot: {e}")

        objects = []
        for doc in docs:
            if not isinstance(doc, dict):
                raise OverlayError("Overlay snapshot documents must be mappings")
            if doc.get("kind", "").endswith("List"):
                objects.extend(doc.get("items") or [])
            else:
                objects.append(doc)

        return objects

    def list_objects(self, kind: str) -> List[Dict[str, Any]]:
        return [
            obj for obj in self._objects
            if obj.get("kind") == kind
            and ((obj.get("metadata") or {}).get("namespace") or DEFAULT_NAMESPACE) == self.namespace
        ]

    def apply(self, obj: Dict[str, Any]) -> None:
        key = (obj.get("kind"), obj["metadata"]["name"])
        self._objects = [
            o for o in self._objects
            if (o.get("kind"), (o.get("metadata") or {}).get("name")) != key
        ]
        self._objects.append(obj)
        logger.debug(f"Applied {key[0]} {key[1]} to snapshot")


class KubectlOverlayReader(OverlayStateReader):
    """Reads and applies overlay objects with kubectl against the VLAB cluster."""

    RESOURCES = {
        "Agent": "agents.agent.githedgehog.com",
        "VPC": "vpcs.vpc.githedgehog.com",
        "VPCAttachment": "vpcattachments.vpc.githedgehog.com",
        "VPCPeering": "vpcpeerings.vpc.githedgehog.com",
        "ExternalPeering": "externalpeerings.vpc.githedgehog.com",
    }

    def __init__(
        self,
        kubeconfig: str,
        namespace: str = DEFAULT_NAMESPACE,
        kubectl: str = "kubectl",
        timeout: int = 60
    ):
        """
        Initialize reader.

        Args:
            kubeconfig: Path to the kubeconfig of the VLAB cluster
            namespace: Namespace to list objects in
            kubectl: kubectl binary
            timeout: Per-call timeout in seconds
        """
        super().__init__(namespace)
        self.kubeconfig = kubeconfig
        self.kubectl = kubectl
        self.timeout = timeout

    def _run(self, args: List[str], stdin: Optional[str] = None) -> str:
        cmd = [self.kubectl, "--kubeconfig", self.kubeconfig, "-n", self.namespace] + args
        logger.debug(f"Running {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise OverlayError(f"Failed to run kubectl: {e}")

        if result.returncode != 0:
            raise OverlayError(
                f"kubectl {' '.join(args)} failed ({result.returncode}): {result.stderr.strip()}"
            )

        return result.stdout

    def list_objects(self, kind: str) -> List[Dict[str, Any]]:
        resource = self.RESOURCES.get(kind)
        if resource is None:
            raise OverlayError(f"Unsupported overlay kind: {kind}")

        output = self._run(["get", resource, "-o", "json"])
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise OverlayError(f"Failed to parse kubectl output for {kind}: {e}")

        return [dict(item, kind=kind) for item in data.get("items", [])]

    def apply(self, obj: Dict[str, Any]) -> None:
        self._run(["apply", "-f", "-"], stdin=json.dumps(obj))
        logger.debug(f"Applied {obj.get('kind')} {obj['metadata']['name']}")
