"""Tests for overlay objects and readers."""

import json
import subprocess
from datetime import datetime, timezone

import pytest

from overlay import (
    OverlayError, Agent, VPC, VPCAttachment, VPCPeering, ExternalPeering,
    FileOverlayReader, KubectlOverlayReader,
)

from tests.fakes import vpc_obj, peering_obj, external_peering_obj


SNAPSHOT = """
apiVersion: v1
kind: List
items:
- kind: Agent
  metadata:
    name: leaf-1
    generation: 5
  status:
    lastHeartbeat: "2024-05-01T11:59:50Z"
    lastAppliedGen: 5
- kind: VPC
  metadata:
    name: vpc-1
  spec:
    subnets:
      default:
        subnet: 10.0.1.0/24
        vlan: 1001
---
kind: VPCAttachment
metadata:
  name: vpc-1--server-1
spec:
  subnet: vpc-1/default
  connection: server-1--unbundled--leaf-1
---
kind: VPC
metadata:
  name: vpc-other
  namespace: tenant-a
spec:
  subnets: {}
"""


class TestModels:
    def test_agent(self):
        agent = Agent.from_object({
            "metadata": {"name": "leaf-1", "generation": 2},
            "status": {"lastHeartbeat": "2024-05-01T12:00:00Z", "lastAppliedGen": 1},
        })
        assert agent.generation == 2
        assert agent.last_applied_gen == 1
        assert agent.last_heartbeat == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_agent_bad_timestamp(self):
        with pytest.raises(OverlayError, match="Invalid timestamp"):
            Agent.from_object({"metadata": {"name": "leaf-1"}, "status": {"lastHeartbeat": "yesterday"}})

    def test_vpc(self):
        vpc = VPC.from_object(vpc_obj("vpc-1", "10.0.1.0/24", vlan=1001))
        assert vpc.subnets["default"].subnet == "10.0.1.0/24"
        assert vpc.subnets["default"].vlan == "1001"
        assert vpc.subnets["default"].dhcp_enable

    def test_attachment_subnet_defaults(self):
        attachment = VPCAttachment(name="a", subnet="vpc-1", connection="c")
        assert attachment.vpc_name == "vpc-1"
        assert attachment.subnet_name == "default"

    def test_peering_vpcs_sorted(self):
        peering = VPCPeering.from_object(peering_obj("p", "vpc-2", "vpc-1"))
        assert peering.vpcs() == ("vpc-1", "vpc-2")

    @pytest.mark.parametrize("permit", [[], [{"vpc-1": {}}], [{"vpc-1": {}, "vpc-2": {}}, {"vpc-3": {}, "vpc-4": {}}]])
    def test_peering_malformed(self, permit):
        with pytest.raises(OverlayError):
            VPCPeering(name="p", permit=permit).vpcs()

    def test_external_peering(self):
        peering = ExternalPeering.from_object(
            external_peering_obj("e", "vpc-1", ["default"], "ext-1", ["0.0.0.0/0", "8.8.0.0/16"]),
        )
        assert peering.vpc == "vpc-1"
        assert peering.subnets == ["default"]
        assert peering.external == "ext-1"
        assert peering.prefixes == ["0.0.0.0/0", "8.8.0.0/16"]

    def test_missing_name(self):
        with pytest.raises(OverlayError, match="without metadata.name"):
            VPC.from_object({"kind": "VPC", "metadata": {}})


class TestFileReader:
    @pytest.fixture
    def path(self, tmp_path):
        path = tmp_path / "overlay.yaml"
        path.write_text(SNAPSHOT)
        return str(path)

    def test_lists_by_kind_and_namespace(self, path):
        reader = FileOverlayReader(path)
        assert [a.name for a in reader.list_agents()] == ["leaf-1"]
        assert [v.name for v in reader.list_vpcs()] == ["vpc-1"]
        assert reader.list_vpc_attachments()[0].connection == "server-1--unbundled--leaf-1"
        assert reader.list_vpc_peerings() == []

        other = FileOverlayReader(path, namespace="tenant-a")
        assert [v.name for v in other.list_vpcs()] == ["vpc-other"]

    def test_apply_replaces(self, path):
        reader = FileOverlayReader(path)
        reader.apply(VPC.from_object(vpc_obj("vpc-1", "10.0.9.0/24")).to_object("default"))
        [vpc] = reader.list_vpcs()
        assert vpc.subnets["default"].subnet == "10.0.9.0/24"

    def test_missing_file(self, tmp_path):
        with pytest.raises(OverlayError, match="not found"):
            FileOverlayReader(str(tmp_path / "nope.yaml"))

    def test_malformed_object(self, tmp_path):
        path = tmp_path / "overlay.yaml"
        path.write_text("kind: Agent\nmetadata:\n  name: leaf-1\n  generation: lots\n")
        with pytest.raises(OverlayError, match="Malformed Agent"):
            FileOverlayReader(str(path)).list_agents()


class TestKubectlReader:
    def test_list(self, monkeypatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            items = {"items": [{"metadata": {"name": "vpc-1"}, "spec": {"subnets": {}}}]}
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(items), stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)

        reader = KubectlOverlayReader("/vlab/kubeconfig.yaml", namespace="default")
        assert [v.name for v in reader.list_vpcs()] == ["vpc-1"]
        assert calls == [[
            "kubectl", "--kubeconfig", "/vlab/kubeconfig.yaml", "-n", "default",
            "get", "vpcs.vpc.githedgehog.com", "-o", "json",
        ]]

    def test_apply_sends_object(self, monkeypatch):
        seen = {}

        def fake_run(cmd, **kwargs):
            seen["cmd"] = cmd
            seen["input"] = kwargs.get("input")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)

        obj = VPCAttachment(name="a", subnet="vpc-1/default", connection="c").to_object("default")
        KubectlOverlayReader("/vlab/kubeconfig.yaml").apply(obj)

        assert seen["cmd"][-3:] == ["apply", "-f", "-"]
        assert json.loads(seen["input"]) == obj

    def test_kubectl_failure(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="connection refused")

        monkeypatch.setattr(subprocess, "run", fake_run)

        with pytest.raises(OverlayError, match="connection refused"):
            KubectlOverlayReader("/vlab/kubeconfig.yaml").list_agents()

    def test_kubectl_missing(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError("kubectl")

        monkeypatch.setattr(subprocess, "run", fake_run)

        with pytest.raises(OverlayError, match="Failed to run kubectl"):
            KubectlOverlayReader("/vlab/kubeconfig.yaml").list_vpcs()
