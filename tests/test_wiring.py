"""Tests for the wiring model and loader."""

import pytest

from wiring import (
    WiringError, DeviceRole, Port, Connection, Unbundled, Bundled, MCLAG,
    MCLAGDomain, NAT, Fabric, VPCLoopback, Management,
    expand_links, endpoints, server_ports, load_wiring, parse_wiring,
)

from tests.fakes import fabric_docs, conn_doc, server_link, connection_named


WIRING_YAML = """
apiVersion: wiring.githedgehog.com/v1alpha2
kind: Server
metadata:
  name: control-1
spec:
  type: control
---
kind: Server
metadata:
  name: server-1
---
kind: Switch
metadata:
  name: leaf-1
spec:
  type: vs
---
kind: VLANNamespace
metadata:
  name: default
---
kind: Connection
metadata:
  name: server-1--unbundled--leaf-1
spec:
  unbundled:
    link:
      server:
        port: server-1/enp2s1
      switch:
        port: leaf-1/Ethernet1
"""


@pytest.fixture
def wiring():
    return parse_wiring(fabric_docs())


class TestPort:
    def test_parse(self):
        port = Port.parse("leaf-1/Ethernet4")
        assert port.device == "leaf-1"
        assert port.name == "Ethernet4"
        assert port.port_name == "leaf-1/Ethernet4"

    def test_parse_keeps_rest_of_path(self):
        assert Port.parse("server-1/nic0/port1").name == "nic0/port1"

    @pytest.mark.parametrize("value", ["leaf-1", "/Ethernet1", "leaf-1/", None])
    def test_parse_invalid(self, value):
        with pytest.raises(WiringError):
            Port.parse(value)


class TestParse:
    def test_devices_keep_declaration_order(self, wiring):
        assert [s.name for s in wiring.servers] == [
            "control-1", "server-1", "server-2", "server-3", "server-4",
        ]
        assert wiring.servers[0].role == DeviceRole.CONTROL
        assert wiring.servers[1].role == DeviceRole.SERVER
        assert [s.name for s in wiring.switches] == ["leaf-1", "leaf-2", "spine-1"]
        assert all(s.role == DeviceRole.SWITCH_VS for s in wiring.switches)

    def test_variants(self, wiring):
        types = {conn.name: type(conn.spec) for conn in wiring.connections}
        assert types["control-1--mgmt--leaf-1"] is Management
        assert types["server-1--unbundled--leaf-1"] is Unbundled
        assert types["server-2--bundled--leaf-1"] is Bundled
        assert types["server-3--mclag--leaf-1--leaf-2"] is MCLAG
        assert types["leaf-1--mclag-domain--leaf-2"] is MCLAGDomain
        assert types["spine-1--fabric--leaf-1"] is Fabric
        assert types["spine-1--nat"] is NAT
        assert types["leaf-2--vpc-loopback"] is VPCLoopback

    def test_server_facing(self, wiring):
        facing = [c.name for c in wiring.connections if c.is_server_facing]
        assert facing == [
            "server-1--unbundled--leaf-1",
            "server-2--bundled--leaf-1",
            "server-3--mclag--leaf-1--leaf-2",
            "server-4--unbundled--leaf-2",
        ]

    def test_hardware_switch(self):
        wiring = parse_wiring([{"kind": "Switch", "metadata": {"name": "leaf-hw"}, "spec": {"type": "hw"}}])
        assert wiring.switches[0].role == DeviceRole.SWITCH_HW

    def test_connection_needs_exactly_one_variant(self):
        doc = conn_doc("broken", "unbundled", {"link": server_link("server-1/enp2s1", "leaf-1/Ethernet1")})
        doc["spec"]["nat"] = {"link": {"switch": {"port": "leaf-1/Ethernet2"}}}
        with pytest.raises(WiringError, match="exactly one"):
            parse_wiring([doc])

    def test_connection_without_variant(self):
        with pytest.raises(WiringError, match="exactly one"):
            parse_wiring([{"kind": "Connection", "metadata": {"name": "empty"}, "spec": {}}])

    def test_malformed_variant(self):
        with pytest.raises(WiringError, match="malformed"):
            parse_wiring([conn_doc("broken", "bundled", {"link": {}})])

    def test_unsupported_server_type(self):
        with pytest.raises(WiringError, match="unsupported type"):
            parse_wiring([{"kind": "Server", "metadata": {"name": "x"}, "spec": {"type": "gpu"}}])

    def test_missing_name(self):
        with pytest.raises(WiringError, match="metadata.name"):
            parse_wiring([{"kind": "Server", "metadata": {}}])


class TestExpand:
    def test_every_variant_expands(self, wiring):
        for conn in wiring.connections:
            assert expand_links(conn)

    def test_bundled(self, wiring):
        pairs = expand_links(connection_named(wiring, "server-2--bundled--leaf-1"))
        assert [(a.port_name, b.port_name) for a, b in pairs] == [
            ("server-2/enp2s1", "leaf-1/Ethernet2"),
            ("server-2/enp2s2", "leaf-1/Ethernet3"),
        ]

    def test_mclag_domain_has_peer_and_session_links(self, wiring):
        pairs = expand_links(connection_named(wiring, "leaf-1--mclag-domain--leaf-2"))
        assert [a.name for a, _ in pairs] == ["Ethernet8", "Ethernet9"]

    def test_nat_has_no_remote(self, wiring):
        pairs = expand_links(connection_named(wiring, "spine-1--nat"))
        assert len(pairs) == 1
        assert pairs[0][0].port_name == "spine-1/Ethernet5"
        assert pairs[0][1] is None

    def test_empty_variant(self):
        with pytest.raises(WiringError, match="no links"):
            expand_links(Connection(name="empty", spec=Bundled(links=())))

    def test_endpoints(self, wiring):
        conn = connection_named(wiring, "server-3--mclag--leaf-1--leaf-2")
        assert endpoints(conn) == (["leaf-1", "leaf-2"], ["server-3"])
        assert endpoints(connection_named(wiring, "spine-1--fabric--leaf-1")) == (["leaf-1", "spine-1"], [])

    def test_server_ports(self, wiring):
        conn = connection_named(wiring, "server-3--mclag--leaf-1--leaf-2")
        assert [p.name for p in server_ports(conn)] == ["enp2s1", "enp2s2"]
        assert server_ports(connection_named(wiring, "spine-1--nat")) == []


class TestLoad:
    def test_load_file(self, tmp_path):
        path = tmp_path / "wiring.yaml"
        path.write_text(WIRING_YAML)

        wiring = load_wiring(str(path))
        assert wiring.summary() == {"servers": 2, "switches": 1, "connections": 1}
        assert wiring.servers[0].is_control

    def test_missing_file(self, tmp_path):
        with pytest.raises(WiringError, match="not found"):
            load_wiring(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "wiring.yaml"
        path.write_text("kind: [unclosed\n")
        with pytest.raises(WiringError, match="Failed to parse"):
            load_wiring(str(path))
