"""Network suite: loopback and socket tests, plus peer tests against a remote server."""

from __future__ import annotations

import argparse
import logging

from ..errors import UsageError
from ..models import BufferStatus, HostResource, LinkCharacterization, NetworkPath, TestCase
from ..nic import characterize_link, detect_egress_interface, list_interfaces
from ..pts import PhoronixTestSuite, ToolConfig
from ..results import ResultLocator
from ..sequencer import RunSequencer
from ..server import IPERF3_PORT, NETSERVER_PORT, run_server_mode
from ..utils import probe_tcp_port
from .base import HostDriver, RunContext, SuiteBase, host_resource, upload_results


log = logging.getLogger(__name__)

IPERF_DURATION = 360
NETPERF_DURATION = 360
REACHABILITY_TIMEOUT = 5.0
# Peer profiles and the daemon port each one needs on the server.
PEER_PORTS = {
    "pts/iperf": (IPERF3_PORT, "iperf3 server"),
    "pts/netperf": (NETSERVER_PORT, "netperf server (netserver)"),
}


def standalone_cases() -> list[TestCase]:
    """Cases that need no remote peer."""
    return [
        TestCase("pts/network-loopback", "loopback"),
        TestCase("pts/sockperf", "sockperf_pingpong", ("pts/sockperf.run-test=ping-pong",)),
        TestCase("pts/sockperf", "sockperf_underload", ("pts/sockperf.run-test=under-load",)),
        TestCase("pts/sockperf", "sockperf_throughput", ("pts/sockperf.run-test=throughput",)),
    ]


def peer_cases(server: str, streams: int) -> list[TestCase]:
    """iperf bulk throughput at 1 and N streams, then netperf in both directions and request/response."""

    def iperf(test: str, parallel: int) -> tuple[str, ...]:
        return (
            f"pts/iperf.server-address={server}",
            f"pts/iperf.test={test}",
            f"pts/iperf.parallel={parallel}",
            f"pts/iperf.duration={IPERF_DURATION}",
        )

    def netperf(test: str) -> tuple[str, ...]:
        return (
            f"pts/netperf.server-address={server}",
            f"pts/netperf.run-test={test}",
            f"pts/netperf.duration={NETPERF_DURATION}",
        )

    return [
        TestCase("pts/iperf", "iperf_tcp_1stream", iperf("TCP", 1)),
        TestCase("pts/iperf", f"iperf_tcp_{streams}streams", iperf("TCP", streams)),
        # UDP-1G targets 1 Gbps per stream, so the stream count scales the aggregate.
        TestCase("pts/iperf", f"iperf_udp_{streams}streams", iperf("UDP-1G", streams)),
        TestCase("pts/netperf", "netperf_tcp_stream", netperf("TCP_STREAM")),
        TestCase("pts/netperf", "netperf_tcp_maerts", netperf("TCP_MAERTS")),
        TestCase("pts/netperf", "netperf_tcp_rr", netperf("TCP_RR")),
        TestCase("pts/netperf", "netperf_udp_rr", netperf("UDP_RR")),
    ]


def report_link(link: LinkCharacterization, server: str) -> None:
    print("--- Link characterization ---")
    print(f"  Interface:        {link.interface or 'unknown'}")
    print(f"  NIC speed:        {f'{link.speed_mbps} Mbps' if link.speed_mbps else 'unknown'}")
    print(f"  RTT to {server}: {f'{link.rtt_ms:.3f} ms' if link.rtt_ms is not None else 'unknown'}")
    print(f"  Parallel streams: {link.stream_count}  (UDP-1G target is per stream)")

    check = link.buffer_check
    if check.status is BufferStatus.SKIPPED:
        log.warning("TCP buffer check skipped: %s", check.reason)
    elif check.status is BufferStatus.ADEQUATE:
        print(
            f"  TCP buffers OK: rmem_max={check.rmem_max} wmem_max={check.wmem_max} "
            f"(required {check.required_bytes} bytes)"
        )
    else:
        log.warning(
            "%s: rmem_max=%d wmem_max=%d, required %d bytes",
            check.reason,
            check.rmem_max,
            check.wmem_max,
            check.required_bytes,
        )
        print(f"  Expected RX ceiling: {check.rx_ceiling_gbps:.2f} Gbps")
        print(f"  Expected TX ceiling: {check.tx_ceiling_gbps:.2f} Gbps")
        print("  To fix on this host:")
        for command in check.local_commands:
            print(f"    {command}")
        print(f"  {check.remote_instruction}")
    print("-" * 30)


class NetworkDriver(HostDriver):
    """Gates peer cases on the reachability of the matching server daemon."""

    def __init__(
        self,
        pts: PhoronixTestSuite,
        config: ToolConfig,
        server: str | None = None,
        probe_timeout: float = REACHABILITY_TIMEOUT,
    ) -> None:
        super().__init__(pts, config)
        self.server = server
        self.probe_timeout = probe_timeout
        self._reachable: dict[int, bool] = {}

    def is_reachable(self, port: int, service: str) -> bool:
        if port not in self._reachable:
            reachable = probe_tcp_port(self.server or "", port, self.probe_timeout)
            if reachable:
                print(f"  {service} ({self.server}:{port}): OK")
            else:
                log.warning(
                    "%s (%s:%d) is not reachable. Start the daemon on the remote host before running peer tests.",
                    service,
                    self.server,
                    port,
                )
            self._reachable[port] = reachable
        return self._reachable[port]

    def check_ready(self, resource: HostResource, test: TestCase) -> str | None:
        if test.profile not in PEER_PORTS or not self.server:
            return None
        port, service = PEER_PORTS[test.profile]
        if not self.is_reachable(port, service):
            return f"{service} at {self.server}:{port} is not reachable"
        return None


class NetworkSuite(SuiteBase):
    name = "network"
    description = "Network throughput and latency, standalone and against a remote peer"
    dmidecode_type = "9"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        mode = parser.add_mutually_exclusive_group()
        mode.add_argument("-s", "--server", metavar="ADDRESS", help="Remote server running iperf3 and netserver")
        mode.add_argument(
            "--server-mode",
            action="store_true",
            help="Run iperf3 and netserver daemons on this host until interrupted",
        )
        parser.add_argument(
            "-I",
            "--interface",
            help="Client: egress interface (default: from the routing table). Server: interface or IPv4 to bind",
        )
        parser.add_argument("--nic-speed", type=int, metavar="MBPS", help="NIC line rate for virtual NICs")
        parser.add_argument("--streams", type=int, help="Parallel streams (default: scaled from NIC speed)")

    def validate(self, args: argparse.Namespace) -> None:
        if args.server_mode and args.server:
            raise UsageError("--server-mode and --server are mutually exclusive")
        if args.nic_speed is not None and args.nic_speed <= 0:
            raise UsageError("--nic-speed must be a positive number of Mbps")
        if args.streams is not None and args.streams <= 0:
            raise UsageError("--streams must be a positive integer")

    def run_service(self, args: argparse.Namespace, context: RunContext) -> int | None:
        if not args.server_mode:
            return None
        return run_server_mode(context.pts, args.interface)

    def run(self, args: argparse.Namespace, context: RunContext) -> None:
        pts = context.pts
        server = args.server

        link = None
        routing_interface = None
        if server:
            path = NetworkPath(peer_address=server, interface=args.interface, nic_speed_override=args.nic_speed)
            link = characterize_link(path, args.streams, context.sys_root, context.proc_root)
            routing_interface = link.interface or detect_egress_interface(server)

        self.capture_snapshot(
            context,
            self.snapshot_context(
                args,
                context,
                settings={"Server": server or "(none, standalone tests only)"},
                interfaces=list_interfaces(context.sys_root),
                routing_interface=routing_interface,
            ),
        )

        print("Setting up Phoronix Test Suite in batch mode...")
        pts.batch_setup(run_all_combinations=False)

        cases = standalone_cases()
        if server and link is not None:
            report_link(link, server)
            print(f"--- Peer-to-peer tests will run against {server} ---")
            cases += peer_cases(server, link.stream_count)
        else:
            print("--- No --server provided; skipping peer-to-peer tests ---")

        cases = [
            TestCase(case.profile, case.label, case.preset_options, f"{context.result_id}_{case.label}")
            for case in cases
        ]
        host = host_resource()
        context.resources.append({**host.to_dict(), "server": server, **(link.to_dict() if link else {})})
        # Profiles declare their own run counts, so FORCE_TIMES_TO_RUN is left unset.
        driver = NetworkDriver(pts, ToolConfig(results_description=context.result_name), server)
        RunSequencer(driver, ResultLocator(pts.results_dir), context.ledger).run_all([host], cases)

        upload_results(context)
