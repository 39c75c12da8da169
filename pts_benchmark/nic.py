"""Link characterization: NIC speed, parallel stream count and TCP buffer sizing."""

from __future__ import annotations

import ipaddress
import logging
import math
import re
from fractions import Fraction
from pathlib import Path

from .models import BufferCheck, BufferStatus, LinkCharacterization, NetworkPath
from .utils import read_command_output, read_sysfs_int


log = logging.getLogger(__name__)

SYS_ROOT = Path("/sys")
PROC_ROOT = Path("/proc")

# One flow tops out around 10-20 Gbps, and the iperf UDP-1G profile sends
# 1 Gbps per stream, so streams track the link rate in Gbps with this floor.
STREAM_FLOOR = 10
# Headroom added on top of the raw bandwidth-delay product.
BDP_HEADROOM = 0.2
# Mbps x ms -> bytes: 1e6 bit/s * 1e-3 s / 8 bit/byte.
BYTES_PER_MBPS_MS = 125

RTT_PROBE_COUNT = 4
RTT_PROBE_TIMEOUT = 10.0

_PING_RTT = re.compile(r"=\s*[\d.]+/([\d.]+)/")
_ROUTE_DEV = re.compile(r"\bdev\s+(\S+)")
_INET_ADDR = re.compile(r"\binet\s+(\d+\.\d+\.\d+\.\d+)")


def detect_nic_speed(interface: str, sys_root: Path = SYS_ROOT) -> int | None:
    """Link speed in Mbps; None for no carrier, virtual NICs or a missing entry."""
    speed = read_sysfs_int(sys_root / "class" / "net" / interface / "speed")
    if speed is None or speed <= 0:
        return None
    return speed


def stream_count(speed_mbps: int | None, floor: int = STREAM_FLOOR) -> int:
    """Parallel streams for multi-stream tests: max(floor, speed_Gbps), floor if unknown."""
    if speed_mbps is None or speed_mbps <= 0:
        return floor
    return max(floor, speed_mbps // 1000)


def required_buffer_bytes(speed_mbps: int, rtt_ms: float, headroom: float = BDP_HEADROOM) -> int:
    """Bandwidth-delay product plus headroom, in bytes, using exact arithmetic."""
    bdp = Fraction(speed_mbps) * Fraction(str(rtt_ms)) * BYTES_PER_MBPS_MS
    return math.floor(bdp * (1 + Fraction(str(headroom))))


def throughput_ceiling_gbps(buffer_bytes: int, rtt_ms: float) -> float:
    """Best-case single-connection throughput a buffer ceiling allows at a given RTT."""
    return buffer_bytes * 8 / rtt_ms / 1e6


def measure_rtt(host: str, count: int = RTT_PROBE_COUNT, timeout: float = RTT_PROBE_TIMEOUT) -> float | None:
    """Average ICMP round-trip time in ms, None when ping is unavailable or blocked."""
    deadline = max(1, int(timeout))
    output = read_command_output(
        ["ping", "-c", str(count), "-q", "-w", str(deadline), host],
        timeout=timeout + 2,
    )
    if not output:
        return None
    match = _PING_RTT.search(output)
    if not match:
        return None
    return float(match.group(1))


def read_socket_buffer_limits(proc_root: Path = PROC_ROOT) -> tuple[int, int]:
    """System-wide (rmem_max, wmem_max); 0 when unreadable."""
    core = proc_root / "sys" / "net" / "core"
    rmem_max = read_sysfs_int(core / "rmem_max") or 0
    wmem_max = read_sysfs_int(core / "wmem_max") or 0
    return rmem_max, wmem_max


def sysctl_commands(required_bytes: int) -> tuple[str, ...]:
    return (
        f"sudo sysctl -w net.core.rmem_max={required_bytes}",
        f"sudo sysctl -w net.core.wmem_max={required_bytes}",
        f'sudo sysctl -w net.ipv4.tcp_rmem="4096 87380 {required_bytes}"',
        f'sudo sysctl -w net.ipv4.tcp_wmem="4096 65536 {required_bytes}"',
    )


def buffer_requirement(
    speed_mbps: int | None,
    rtt_ms: float | None,
    limits: tuple[int, int],
    peer: str = "the server",
    headroom: float = BDP_HEADROOM,
) -> BufferCheck:
    """Compare socket buffer ceilings to BDP + headroom for both ends of a link."""
    rmem_max, wmem_max = limits
    if speed_mbps is None or speed_mbps <= 0:
        return BufferCheck(
            BufferStatus.SKIPPED,
            reason="NIC speed unknown; use --nic-speed <Mbps> to enable the buffer adequacy check",
            rmem_max=rmem_max,
            wmem_max=wmem_max,
        )
    if rtt_ms is None or rtt_ms <= 0:
        return BufferCheck(
            BufferStatus.SKIPPED,
            reason=f"RTT measurement to {peer} failed (ping unavailable or ICMP blocked)",
            rmem_max=rmem_max,
            wmem_max=wmem_max,
        )

    required = required_buffer_bytes(speed_mbps, rtt_ms, headroom)
    if rmem_max >= required and wmem_max >= required:
        return BufferCheck(
            BufferStatus.ADEQUATE,
            reason="buffers are sufficient for this link's bandwidth-delay product",
            required_bytes=required,
            rmem_max=rmem_max,
            wmem_max=wmem_max,
            rtt_ms=rtt_ms,
        )

    return BufferCheck(
        BufferStatus.INSUFFICIENT,
        reason="TCP buffers too small for this link's bandwidth-delay product",
        required_bytes=required,
        rmem_max=rmem_max,
        wmem_max=wmem_max,
        rtt_ms=rtt_ms,
        rx_ceiling_gbps=throughput_ceiling_gbps(rmem_max, rtt_ms),
        tx_ceiling_gbps=throughput_ceiling_gbps(wmem_max, rtt_ms),
        local_commands=sysctl_commands(required),
        remote_instruction=(
            f"Apply the same settings on {peer}; asymmetric buffer limits cap throughput in one direction."
        ),
    )


def detect_egress_interface(peer: str) -> str | None:
    """Interface the routing table uses to reach a peer."""
    output = read_command_output(["ip", "route", "get", peer])
    if not output:
        return None
    match = _ROUTE_DEV.search(output)
    return match.group(1) if match else None


def resolve_bind_address(interface: str) -> str | None:
    """Literal IPv4 addresses pass through; interface names map to their first IPv4."""
    try:
        return str(ipaddress.IPv4Address(interface))
    except ValueError:
        pass
    output = read_command_output(["ip", "-4", "addr", "show", interface])
    if not output:
        return None
    match = _INET_ADDR.search(output)
    return match.group(1) if match else None


def list_interfaces(sys_root: Path = SYS_ROOT) -> list[str]:
    """Non-loopback interfaces known to the kernel."""
    net_dir = sys_root / "class" / "net"
    if not net_dir.is_dir():
        return []
    return sorted(entry.name for entry in net_dir.iterdir() if entry.name != "lo")


def characterize_link(
    path: NetworkPath,
    streams_override: int | None = None,
    sys_root: Path = SYS_ROOT,
    proc_root: Path = PROC_ROOT,
) -> LinkCharacterization:
    """Derive speed, RTT, stream count and buffer verdict for the path to a peer."""
    interface = path.interface
    if interface is None and path.peer_address:
        interface = detect_egress_interface(path.peer_address)
        if interface:
            log.info("Auto-detected egress interface: %s", interface)
        else:
            log.warning("Could not determine egress interface; NIC speed detection skipped.")

    speed = path.nic_speed_override
    if speed is None and interface:
        speed = detect_nic_speed(interface, sys_root)
        if speed is None:
            log.warning(
                "NIC speed not available for %s (virtual NIC or no carrier); use --nic-speed <Mbps> to set it.",
                interface,
            )
        else:
            log.info("Detected NIC speed: %d Mbps (interface: %s)", speed, interface)

    rtt = None
    if path.peer_address and speed:
        rtt = measure_rtt(path.peer_address)
    check = buffer_requirement(speed, rtt, read_socket_buffer_limits(proc_root), path.peer_address or "the server")
    streams = streams_override if streams_override else stream_count(speed)
    return LinkCharacterization(interface, speed, rtt, streams, check)
