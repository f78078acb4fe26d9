"""
Connectivity Verification Engine

Checks that the deployed overlay behaves as declared:
1. Agents must be alive and converged, otherwise nothing is tested
2. Build the set of testable servers from wiring, VMs and VPC attachments
3. Derive expected reachability from VPC peerings and external peerings
4. Run ping / iperf3 / curl probes and compare against expectations

Setup problems (steps 1-3) raise ConnectivityError. Probe mismatches are
recorded as failed CheckResults and never stop the run.
"""

import logging
import ipaddress
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple, Any
from dataclasses import dataclass, field

from collector.addresses import AddressCollector, AddressCollectorError
from collector.probes import (
    ProbeError, PING_LOSS_MESSAGE, CURL_EXPECTED, CURL_SSH_TIMEOUT,
    ping_command, ping_timeout, iperf_server_command, iperf_client_command,
    iperf_timeout, curl_command, parse_iperf3_report, format_bytes,
)
from overlay import (
    OverlayError, OverlayStateReader, Agent, VPC, VPCAttachment, VPCPeering,
    ExternalPeering,
)
from ssh_client import SSHClientError
from wiring import Wiring, Connection, endpoints

from .topology import VM, VMRegistry

logger = logging.getLogger(__name__)

CHECK_PING = "ping"
CHECK_IPERF = "iperf"
CHECK_CURL = "curl"

AGENT_HEARTBEAT_MAX_AGE = timedelta(seconds=60)
IPERF_MIN_BITS_PER_SECOND = 8_500_000_000
IPERF_SETTLE_SECONDS = 2.0
DEFAULT_ROUTE = "0.0.0.0/0"


class ConnectivityError(Exception):
    """Exception raised when the fabric can't be tested at all."""
    pass


@dataclass
class ConnectivityTestConfig:
    """Which checks to run. A zero ping count or iperf duration disables that check."""
    vpc: bool = True
    vpc_ping: int = 3
    vpc_iperf: int = 10
    ext: bool = True
    ext_curl: bool = True


@dataclass
class TestServer:
    """A server taking part in the current run, rebuilt on every run."""
    name: str
    vm: VM
    connection: Connection
    connected_to: List[str]
    attachment: VPCAttachment
    vpc: VPC
    subnet: str
    ip: str = ""
    vpc_peers: Set[str] = field(default_factory=set)
    external_peering: Optional[ExternalPeering] = None
    externals: List[str] = field(default_factory=list)

    @property
    def connection_type(self) -> str:
        return self.connection.type_name

    @property
    def subnet_prefix(self) -> str:
        return self.vpc.subnets[self.subnet].subnet


@dataclass
class CheckResult:
    """Outcome of a single check."""
    source: str
    target: str
    check: str
    passed: bool
    message: str
    output: str = ""
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "source": self.source,
            "target": self.target,
            "check": self.check,
            "passed": self.passed,
            "message": self.message,
        }
        if not self.passed and self.output:
            result["output"] = self.output
        if self.details:
            result["details"] = self.details
        return result


@dataclass
class ConnectivityReport:
    """
    Aggregated verdict.

    tested/passed count test units: a server pair counts once for all
    intra-fabric checks run on it, an external once per permitted name.
    """
    tested: int = 0
    passed: int = 0
    results: List[CheckResult] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.tested - self.passed

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def failures(self) -> List[CheckResult]:
        return [r for r in self.results if not r.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "tested": self.tested,
                "passed": self.passed,
                "failed": self.failed,
            },
            "results": [r.to_dict() for r in self.results],
        }


def check_agents(agents: List[Agent], now: datetime) -> None:
    """
    Make sure every agent is alive and has applied its current generation.

    Raises:
        ConnectivityError: On the first stale or non-converged agent
    """
    for agent in agents:
        if agent.last_heartbeat is None or agent.last_heartbeat < now - AGENT_HEARTBEAT_MAX_AGE:
            raise ConnectivityError(f"Agent {agent.name} last heartbeat is too old: {agent.last_heartbeat}")

        if agent.last_applied_gen != agent.generation:
            raise ConnectivityError(
                f"Agent {agent.name} last applied gen {agent.last_applied_gen} "
                f"doesn't match current gen {agent.generation}"
            )

    logger.info(f"All {len(agents)} agents are alive and converged")


def add_vpc_peers(servers: Dict[str, TestServer], peerings: List[VPCPeering]) -> None:
    """
    Mark servers of peered VPCs as mutually reachable.

    Servers only ever reach each other through a peering; sharing a VPC
    is not enough.

    Raises:
        ConnectivityError: Malformed peering or a peered VPC without servers
    """
    for peering in peerings:
        try:
            vpc1, vpc2 = peering.vpcs()
        except OverlayError as e:
            raise ConnectivityError(f"Error getting VPCs for peering {peering.name}: {e}")

        vpc1_servers = sorted(s.name for s in servers.values() if s.vpc.name == vpc1)
        vpc2_servers = sorted(s.name for s in servers.values() if s.vpc.name == vpc2)

        if not vpc1_servers:
            raise ConnectivityError(f"Not enough servers found for peering {peering.name} for vpc {vpc1}")
        if not vpc2_servers:
            raise ConnectivityError(f"Not enough servers found for peering {peering.name} for vpc {vpc2}")

        for server1 in vpc1_servers:
            for server2 in vpc2_servers:
                servers[server1].vpc_peers.add(server2)
                servers[server2].vpc_peers.add(server1)


def bind_external_peerings(servers: Dict[str, TestServer], peerings: List[ExternalPeering]) -> None:
    """
    Attach external peerings to the servers they permit.

    Raises:
        ConnectivityError: Permit without the default route, or a server
            matching more than one external peering
    """
    for peering in peerings:
        if DEFAULT_ROUTE not in peering.prefixes:
            raise ConnectivityError(
                f"External peering {peering.name} doesn't include default route, not supported for testing"
            )

        for name in sorted(servers):
            server = servers[name]
            if server.vpc.name != peering.vpc or server.subnet not in peering.subnets:
                continue
            if peering.external in server.externals:
                continue

            if server.external_peering is not None:
                raise ConnectivityError(
                    f"Server {server.name} has multiple external peerings, not supported for testing"
                )

            server.external_peering = peering
            server.externals.append(peering.external)


def classify_ping(expected: bool, ok: bool, output: str) -> Tuple[bool, str]:
    """
    Score a ping against the expected reachability.

    An expected failure only counts when ping itself reports total packet
    loss; any other failure (unreachable host, ssh error, timeout) does not.

    Returns:
        Tuple of (passed, message)
    """
    if expected and ok:
        return True, "Connectivity expected, ping succeeded"
    if expected:
        return False, "Connectivity expected, ping failed"
    if ok:
        return False, "Connectivity not expected, ping not failed"
    if PING_LOSS_MESSAGE in output:
        return True, "Connectivity not expected, ping failed"
    return False, "Connectivity not expected, ping failed without '100% packet loss' message"


class ConnectivityTester:
    """
    Runs the connectivity test against live overlay state.

    Usage:
        tester = ConnectivityTester(wiring, registry, reader, runner)
        report = tester.run(ConnectivityTestConfig(vpc_ping=1))
    """

    def __init__(
        self,
        wiring: Wiring,
        registry: VMRegistry,
        reader: OverlayStateReader,
        runner,
        settle_delay: float = IPERF_SETTLE_SECONDS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize tester.

        Args:
            wiring: Fabric wiring
            registry: Compiled VMs, used to reach the servers
            reader: Overlay state reader
            runner: Remote executor implementing run(vm, command, timeout)
            settle_delay: Delay between starting the iperf3 server and client
            clock: Returns the current aware datetime, for agent heartbeats
        """
        self.wiring = wiring
        self.registry = registry
        self.reader = reader
        self.runner = runner
        self.settle_delay = settle_delay
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, cfg: ConnectivityTestConfig) -> ConnectivityReport:
        logger.info(
            f"Starting connectivity test: vpc={cfg.vpc} vpc_ping={cfg.vpc_ping} "
            f"vpc_iperf={cfg.vpc_iperf} ext={cfg.ext} ext_curl={cfg.ext_curl}"
        )

        try:
            check_agents(self.reader.list_agents(), self.clock())

            attachments = self.reader.list_vpc_attachments()
            peerings = self.reader.list_vpc_peerings()
            vpcs = self.reader.list_vpcs()
            external_peerings = self.reader.list_external_peerings()
        except OverlayError as e:
            raise ConnectivityError(f"Error reading overlay state: {e}")

        servers = self.build_servers(attachments, vpcs)
        add_vpc_peers(servers, peerings)
        bind_external_peerings(servers, external_peerings)

        report = ConnectivityReport()
        names = sorted(servers)

        for name in names:
            server = servers[name]
            logger.info(
                f"To be tested: {name} vpc_peers={sorted(server.vpc_peers)} externals={server.externals}"
            )

            if cfg.vpc:
                for peer in names:
                    if peer == name:
                        continue
                    self._test_pair(server, servers[peer], cfg, report)

            if cfg.ext and cfg.ext_curl:
                for external in server.externals:
                    self._test_external(server, external, report)

        logger.info(
            f"Connectivity test complete: tested={report.tested} "
            f"passed={report.passed} failed={report.failed}"
        )

        return report

    def build_servers(self, attachments: List[VPCAttachment], vpcs: List[VPC]) -> Dict[str, TestServer]:
        """
        Collect the servers that can be tested.

        Servers without a VM, without exactly one server-facing connection
        or without exactly one VPC attachment are skipped.

        Raises:
            ConnectivityError: Attachment pointing to an unknown VPC/subnet,
                unreachable server or observed address outside the VPC subnet
        """
        vpcs_by_name = {vpc.name: vpc for vpc in vpcs}
        servers: Dict[str, TestServer] = {}

        for device in self.wiring.servers:
            if device.is_control:
                continue

            logger.debug(f"Checking {device.name}")

            vm = self.registry.get(device.name)
            if vm is None:
                logger.info(f"Skipping server {device.name} (no VM)")
                continue

            conns = [
                conn for conn in self.wiring.connections
                if conn.is_server_facing and device.name in endpoints(conn)[1]
            ]
            if not conns:
                logger.info(f"Skipping server {device.name} (no connection)")
                continue
            if len(conns) > 1:
                logger.info(f"Skipping server {device.name} (multiple connections)")
                continue

            conn = conns[0]
            switches, conn_servers = endpoints(conn)
            if len(conn_servers) != 1:
                logger.info(f"Skipping server {device.name} (multiple servers in connection {conn.name})")
                continue

            conn_attachments = [a for a in attachments if a.connection == conn.name]
            if not conn_attachments:
                logger.info(f"Skipping server {device.name} (no VPC attachment)")
                continue
            if len(conn_attachments) > 1:
                logger.info(f"Skipping server {device.name} (multiple VPC attachments)")
                continue

            attachment = conn_attachments[0]
            vpc = vpcs_by_name.get(attachment.vpc_name)
            if vpc is None:
                raise ConnectivityError(
                    f"VPC {attachment.vpc_name} not found for server {device.name}, attachment {attachment.name}"
                )
            if attachment.subnet_name not in vpc.subnets:
                raise ConnectivityError(
                    f"VPC attachment subnet not found for server {device.name}, attachment {attachment.name}"
                )

            server = TestServer(
                name=device.name,
                vm=vm,
                connection=conn,
                connected_to=switches,
                attachment=attachment,
                vpc=vpc,
                subnet=attachment.subnet_name,
            )
            server.ip = self._server_ip(server)

            logger.info(
                f"Found {server.name}: conn={server.connection_type} switches={server.connected_to} "
                f"vpc={vpc.name} subnet={server.subnet}:{server.subnet_prefix} ip={server.ip}"
            )

            servers[server.name] = server

        return servers

    def _server_ip(self, server: TestServer) -> str:
        try:
            addr = AddressCollector(self.runner, server.vm).collect_single()
        except (AddressCollectorError, SSHClientError) as e:
            raise ConnectivityError(f"Error getting IP for server {server.name}: {e}")

        try:
            declared = ipaddress.ip_network(server.subnet_prefix, strict=False)
        except ValueError as e:
            raise ConnectivityError(f"Invalid subnet {server.subnet_prefix} in VPC {server.vpc.name}: {e}")

        if addr.network != declared:
            raise ConnectivityError(
                f"Server {server.name} IP {addr.network} doesn't match VPC subnet {server.subnet_prefix}"
            )

        return str(addr.ip)

    def _run(self, vm: VM, command: List[str], timeout: int) -> Tuple[str, bool]:
        """Run a probe, turning transport errors into a failed result."""
        try:
            return self.runner.run(vm, command, timeout)
        except SSHClientError as e:
            logger.debug(f"Remote execution on {vm.name} failed: {e}")
            return str(e), False

    def _test_pair(
        self,
        server: TestServer,
        peer: TestServer,
        cfg: ConnectivityTestConfig,
        report: ConnectivityReport
    ) -> None:
        expected = peer.name in server.vpc_peers
        results = []

        if cfg.vpc_ping > 0:
            results.append(self._test_ping(server, peer, expected, cfg.vpc_ping))

        if expected and cfg.vpc_iperf > 0:
            results.append(self._test_iperf(server, peer, cfg.vpc_iperf))

        if not results:
            return

        report.results.extend(results)
        report.tested += 1
        if all(r.passed for r in results):
            report.passed += 1

    def _test_ping(self, server: TestServer, peer: TestServer, expected: bool, count: int) -> CheckResult:
        cmd = ping_command(peer.ip, count)
        logger.debug(f"Testing connectivity using ping from {server.name} to {peer.name} (expected={expected}): {cmd}")

        output, ok = self._run(server.vm, cmd, ping_timeout(count))
        passed, message = classify_ping(expected, ok, output)
        output = output.strip()

        if passed:
            logger.info(f"{message}: {server.name} -> {peer.name}")
            logger.debug(output)
        else:
            logger.error(f"{message}: {server.name} -> {peer.name}\n{output}")

        return CheckResult(
            source=server.name,
            target=peer.name,
            check=CHECK_PING,
            passed=passed,
            message=message,
            output=output,
            details={"expected": expected},
        )

    def _test_iperf(self, server: TestServer, peer: TestServer, duration: int) -> CheckResult:
        """
        Measure throughput from server to peer.

        The iperf3 server is started on the peer first; the client starts on
        the source after settle_delay. Both tasks are joined before scoring.
        """
        outputs: Dict[str, Tuple[str, bool]] = {}

        def run_server():
            cmd = iperf_server_command(duration)
            logger.debug(f"Starting iperf server on {peer.name}: {cmd}")
            outputs["server"] = self._run(peer.vm, cmd, iperf_timeout(duration))

        def run_client():
            cmd = iperf_client_command(peer.ip, duration)
            logger.debug(f"Testing connectivity using iperf from {server.name} to {peer.name}: {cmd}")
            outputs["client"] = self._run(server.vm, cmd, iperf_timeout(duration))

        server_task = threading.Thread(target=run_server, name=f"iperf-server-{peer.name}")
        client_task = threading.Timer(self.settle_delay, run_client)
        client_task.name = f"iperf-client-{server.name}"

        server_task.start()
        client_task.start()
        server_task.join()
        client_task.join()

        server_out, server_ok = outputs.get("server", ("iperf server task did not complete", False))
        client_out, client_ok = outputs.get("client", ("iperf client task did not complete", False))

        problems = []
        details: Dict[str, Any] = {}

        if not server_ok:
            problems.append("Error starting iperf server")
            logger.error(f"Error starting iperf server on {peer.name}\n{server_out.strip()}")
        else:
            logger.debug(f"iperf server output on {peer.name}\n{server_out.strip()}")

        if not client_ok:
            problems.append("Connectivity expected, iperf failed")
            logger.error(f"Connectivity expected, iperf failed: {server.name} -> {peer.name}\n{client_out.strip()}")
        else:
            try:
                report = parse_iperf3_report(client_out)
            except ProbeError as e:
                problems.append(f"Error parsing iperf report: {e}")
                logger.error(f"Error parsing iperf report from {server.name} to {peer.name}: {e}\n{client_out.strip()}")
            else:
                details = report.to_dict()
                sent_speed = format_bytes(report.sum_sent.bits_per_second / 8) + "/s"

                logger.info(
                    f"iperf3 report {server.name} -> {peer.name}: sent_speed={sent_speed} "
                    f"received_speed={format_bytes(report.sum_received.bits_per_second / 8)}/s "
                    f"sent={format_bytes(report.sum_sent.bytes)} "
                    f"received={format_bytes(report.sum_received.bytes)}"
                )

                if report.sum_sent.bits_per_second < IPERF_MIN_BITS_PER_SECOND:
                    problems.append(f"Connectivity expected, iperf speed too low: {sent_speed}")
                    logger.error(
                        f"Connectivity expected, iperf speed too low: {server.name} -> {peer.name} "
                        f"speed={sent_speed} min={format_bytes(IPERF_MIN_BITS_PER_SECOND / 8)}/s"
                    )

        passed = not problems
        if passed:
            logger.info(f"Connectivity expected, iperf succeeded: {server.name} -> {peer.name}")

        return CheckResult(
            source=server.name,
            target=peer.name,
            check=CHECK_IPERF,
            passed=passed,
            message="; ".join(problems) if problems else "Connectivity expected, iperf succeeded",
            output=client_out.strip(),
            details=details or None,
        )

    def _test_external(self, server: TestServer, external: str, report: ConnectivityReport) -> None:
        cmd = curl_command()
        logger.debug(f"Testing external connectivity using curl from {server.name} to {external}: {cmd}")

        output, ok = self._run(server.vm, cmd, CURL_SSH_TIMEOUT)
        output = output.strip()

        if not ok:
            passed, message = False, "External connectivity expected, curl failed"
        elif CURL_EXPECTED not in output:
            passed, message = False, f"External connectivity expected, curl succeeded but doesn't contain {CURL_EXPECTED}"
        else:
            passed, message = True, "External connectivity expected, curl succeeded"

        if passed:
            logger.info(f"{message}: {server.name} -> {external}")
            logger.debug(output)
        else:
            logger.error(f"{message}: {server.name} -> {external}\n{output}")

        report.results.append(CheckResult(
            source=server.name,
            target=external,
            check=CHECK_CURL,
            passed=passed,
            message=message,
            output=output,
        ))
        report.tested += 1
        if passed:
            report.passed += 1
