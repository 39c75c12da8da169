"""System information gathering and the environment snapshot report."""

from __future__ import annotations

import logging
import os
import platform
import re
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .devices import SYS_ROOT, block_device_name, classify
from .models import CpuTopology, StorageResource, SystemInfo
from .privileges import Privilege
from .scheduler import read_scheduler
from .utils import command_exists, read_command_output, read_sysfs_value


log = logging.getLogger(__name__)

PROC_ROOT = Path("/proc")
NOT_AVAILABLE = "n/a"
OFFLOAD_PATTERN = re.compile(
    r"(tcp-segmentation|generic-segmentation|generic-receive|large-receive"
    r"|rx-checksumming|tx-checksumming|scatter-gather)"
)
TCP_SETTINGS = (
    ("congestion_control", "ipv4/tcp_congestion_control"),
    ("moderate_rcvbuf", "ipv4/tcp_moderate_rcvbuf"),
    ("tcp_rmem", "ipv4/tcp_rmem"),
    ("tcp_wmem", "ipv4/tcp_wmem"),
    ("rmem_max", "core/rmem_max"),
    ("wmem_max", "core/wmem_max"),
    ("netdev_max_backlog", "core/netdev_max_backlog"),
)


def _read_mem_total_bytes() -> int | None:
    """Read MemTotal from /proc/meminfo (bytes)."""
    return read_meminfo().get("MemTotal")


def read_meminfo(proc_root: Path = PROC_ROOT) -> dict[str, int]:
    """Parse /proc/meminfo into bytes."""
    values: dict[str, int] = {}
    try:
        with (proc_root / "meminfo").open(encoding="utf-8") as handle:
            for line in handle:
                key, _, rest = line.partition(":")
                parts = rest.split()
                if parts and parts[0].isdigit():
                    multiplier = 1024 if len(parts) > 1 and parts[1] == "kB" else 1
                    values[key.strip()] = int(parts[0]) * multiplier
    except OSError:
        return {}
    return values


def _detect_cpu_model() -> str:
    """Best-effort CPU model string."""
    try:
        with Path("/proc/cpuinfo").open(encoding="utf-8") as handle:
            for line in handle:
                if line.startswith("model name"):
                    return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return platform.processor()


def _detect_os_release() -> tuple[str, str]:
    """Best-effort OS name/version detection."""
    try:
        info = platform.freedesktop_os_release()
    except (AttributeError, OSError):
        info = {}
    name = info.get("PRETTY_NAME") or info.get("NAME") or platform.system()
    version = info.get("VERSION") or info.get("VERSION_ID") or platform.version()
    return name, version


def gather_system_info(hostname_override: str | None = None) -> SystemInfo:
    """Gather system information for the run report."""
    hostname = hostname_override if hostname_override else platform.node()
    os_name, os_version = _detect_os_release()

    return SystemInfo(
        platform=platform.platform(),
        machine=platform.machine(),
        processor=platform.processor(),
        python_version=platform.python_version(),
        cpu_count=os.cpu_count(),
        hostname=hostname,
        os_name=os_name,
        os_version=os_version,
        kernel_version=platform.release(),
        cpu_model=_detect_cpu_model(),
        memory_total_bytes=_read_mem_total_bytes(),
    )


def parse_lscpu_topology(output: str) -> CpuTopology | None:
    """Sockets, cores per socket and threads per core from lscpu output."""
    fields: dict[str, int] = {}
    for line in output.splitlines():
        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()
        if key in ("socket(s)", "core(s) per socket", "thread(s) per core") and value.isdigit():
            fields[key] = int(value)
    try:
        topology = CpuTopology(
            sockets=fields["socket(s)"],
            cores_per_socket=fields["core(s) per socket"],
            threads_per_core=fields["thread(s) per core"],
        )
    except KeyError:
        return None
    return topology if topology.total_threads > 0 else None


def detect_cpu_topology() -> CpuTopology | None:
    output = read_command_output(["lscpu"])
    return parse_lscpu_topology(output) if output else None


def format_bytes(value: int) -> str:
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if size < 1024 or unit == "TiB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TiB"


@dataclass
class SnapshotContext:
    """What the run is about; drives which sections the snapshot contains."""

    suite: str
    result_id: str = ""
    result_name: str = ""
    tests: Sequence[str] = ()
    settings: dict[str, object] = field(default_factory=dict)
    disks: Sequence[StorageResource] = ()
    interfaces: Sequence[str] = ()
    routing_interface: str | None = None
    include_thp: bool = False
    dmidecode_type: str | None = None
    privilege: Privilege | None = None


def _lines(text: str | None) -> list[str]:
    if not text:
        return [NOT_AVAILABLE]
    return text.rstrip("\n").splitlines()


def _value(path: Path) -> str:
    value = read_sysfs_value(path)
    return value if value is not None else NOT_AVAILABLE


def _configuration_section(context: SnapshotContext) -> list[str]:
    lines = [
        f"Date:        {datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"Suite:       {context.suite}",
        f"Result ID:   {context.result_id or '(not set)'}",
        f"Result Name: {context.result_name or '(not set)'}",
        f"Tests:       {' '.join(context.tests)}",
    ]
    lines.extend(f"{key + ':':<13}{value}" for key, value in context.settings.items())
    if context.disks:
        lines.append("Disks:")
        lines.extend(f"  {disk.device_path};{disk.label}" for disk in context.disks)
    if context.routing_interface:
        lines.append(f"Routing interface to server: {context.routing_interface}")
    return lines


def _kernel_section() -> list[str]:
    return [" ".join(platform.uname())]


def _os_release_section() -> list[str]:
    info = platform.freedesktop_os_release()
    return [f"{key}={value}" for key, value in info.items()]


def _cpu_topology_section() -> list[str]:
    return _lines(read_command_output(["lscpu"]))


def _cpu_frequency_section(sys_root: Path) -> list[str]:
    cpu_dir = sys_root / "devices" / "system" / "cpu"
    cpufreq0 = cpu_dir / "cpu0" / "cpufreq"
    if not cpufreq0.is_dir():
        return ["cpufreq interface not available"]
    governors = sorted({_value(path) for path in cpu_dir.glob("cpu[0-9]*/cpufreq/scaling_governor")})
    drivers = sorted({_value(path) for path in cpu_dir.glob("cpu[0-9]*/cpufreq/scaling_driver")})
    return [
        f"governor:  {' '.join(governors)}",
        f"driver:    {' '.join(drivers)}",
        f"min_freq:  {_value(cpufreq0 / 'scaling_min_freq')} kHz",
        f"max_freq:  {_value(cpufreq0 / 'scaling_max_freq')} kHz",
        f"hw_max:    {_value(cpufreq0 / 'cpuinfo_max_freq')} kHz",
    ]


def _numa_section(sys_root: Path) -> list[str]:
    node_dir = sys_root / "devices" / "system" / "node"
    nodes = sorted(node_dir.glob("node[0-9]*"), key=lambda path: int(path.name[4:]))
    if not nodes:
        return ["NUMA topology not available"]
    lines = [f"nodes: {len(nodes)}"]
    for node in nodes:
        total = NOT_AVAILABLE
        meminfo = read_sysfs_value(node / "meminfo")
        if meminfo:
            match = re.search(r"MemTotal:\s+(\d+)\s+kB", meminfo)
            if match:
                total = format_bytes(int(match.group(1)) * 1024)
        lines.append(f"{node.name}: cpus {_value(node / 'cpulist')}  memory {total}")
    return lines


def _thp_section(sys_root: Path) -> list[str]:
    thp_dir = sys_root / "kernel" / "mm" / "transparent_hugepage"
    if not (thp_dir / "enabled").is_file():
        return ["THP interface not available"]
    return [f"enabled: {_value(thp_dir / 'enabled')}", f"defrag:  {_value(thp_dir / 'defrag')}"]


def _memory_section(proc_root: Path) -> list[str]:
    meminfo = read_meminfo(proc_root)
    if not meminfo:
        return [NOT_AVAILABLE]
    return [
        f"{key + ':':<14}{format_bytes(meminfo[key])}"
        for key in ("MemTotal", "MemFree", "MemAvailable", "SwapTotal", "SwapFree")
        if key in meminfo
    ]


def _load_section(proc_root: Path) -> list[str]:
    loadavg = read_sysfs_value(proc_root / "loadavg")
    if loadavg is None:
        return [NOT_AVAILABLE]
    return [f"1-minute: {loadavg.split()[0]}", f"raw:      {loadavg}"]


def _block_devices_section(disks: Sequence[StorageResource], sys_root: Path) -> list[str]:
    lines = _lines(read_command_output(["lsblk", "-o", "NAME,SIZE,TYPE,ROTA,SCHED,RQ-SIZE,RA"]))
    lines.append("")
    for disk in disks:
        classification = classify(disk.device_path, sys_root)
        queue_dir = sys_root / "block" / block_device_name(disk.device_path, sys_root) / "queue"
        scheduler = read_scheduler(disk.device_path, sys_root)
        lines.extend(
            [
                f"--- {disk.label} ({disk.device_path}) ---",
                f"  driver:      {classification.controller_driver}",
                f"  chain:       {' -> '.join(classification.driver_chain) or NOT_AVAILABLE}",
                f"  type:        {classification.device_type.value}",
                f"  scheduler:   {scheduler[0] if scheduler else NOT_AVAILABLE}",
                f"  nr_requests: {_value(queue_dir / 'nr_requests')}",
                f"  read_ahead:  {_value(queue_dir / 'read_ahead_kb')} kB",
                f"  rotational:  {_value(queue_dir / 'rotational')}",
                "",
            ]
        )
    return lines


def _network_section(interfaces: Sequence[str], routing_interface: str | None, sys_root: Path) -> list[str]:
    lines = _lines(read_command_output(["ip", "-s", "link", "show"]))
    lines.append("")
    lines.extend(_lines(read_command_output(["ip", "addr", "show"])))
    lines.append("")
    have_ethtool = command_exists("ethtool")
    for iface in interfaces:
        marker = " <-- routing interface to server" if iface == routing_interface else ""
        net_dir = sys_root / "class" / "net" / iface
        lines.append(f"--- {iface}{marker} ---")
        lines.append(f"  MTU:   {_value(net_dir / 'mtu')}")
        lines.append(f"  Speed: {_value(net_dir / 'speed')} Mbps")
        if not have_ethtool:
            lines.append("  ethtool not available")
            lines.append("")
            continue
        offloads = read_command_output(["ethtool", "-k", iface])
        selected = [line for line in (offloads or "").splitlines() if OFFLOAD_PATTERN.search(line)]
        lines.append("  Driver / firmware:")
        lines.extend(f"    {line}" for line in _lines(read_command_output(["ethtool", "-i", iface])))
        lines.append("  Offload flags (selected):")
        lines.extend(f"    {line}" for line in (selected or [NOT_AVAILABLE]))
        lines.append("  Ring buffers:")
        lines.extend(f"    {line}" for line in _lines(read_command_output(["ethtool", "-g", iface])))
        lines.append("")
    return lines


def _tcp_section(proc_root: Path) -> list[str]:
    net_dir = proc_root / "sys" / "net"
    return [f"{name + ':':<21}{_value(net_dir / relative)}" for name, relative in TCP_SETTINGS]


def _dmidecode_section(dmi_type: str, privilege: Privilege) -> list[str]:
    return _lines(read_command_output(privilege.command(["dmidecode", "-t", dmi_type]), timeout=30))


def build_snapshot(
    context: SnapshotContext,
    sys_root: Path = SYS_ROOT,
    proc_root: Path = PROC_ROOT,
) -> str:
    """Render the snapshot text; each section is best-effort on its own."""
    sections: list[tuple[str, Callable[[], list[str]]]] = [
        ("Benchmark Configuration", lambda: _configuration_section(context)),
        ("Kernel", _kernel_section),
        ("OS Release", _os_release_section),
        ("CPU Topology", _cpu_topology_section),
        ("CPU Frequency Scaling", lambda: _cpu_frequency_section(sys_root)),
        ("NUMA Topology", lambda: _numa_section(sys_root)),
    ]
    if context.include_thp:
        sections.append(("Transparent Huge Pages", lambda: _thp_section(sys_root)))
    if context.disks:
        sections.append(("Block Devices", lambda: _block_devices_section(context.disks, sys_root)))
    if context.interfaces:
        sections.append(
            (
                "Network Interfaces",
                lambda: _network_section(context.interfaces, context.routing_interface, sys_root),
            )
        )
        sections.append(("TCP/IP Settings", lambda: _tcp_section(proc_root)))
    sections.append(("Memory", lambda: _memory_section(proc_root)))
    sections.append(("Load Average", lambda: _load_section(proc_root)))

    privilege = context.privilege
    if context.dmidecode_type and privilege and privilege.has_privilege and command_exists("dmidecode"):
        dmi_type = context.dmidecode_type
        sections.append((f"Hardware (dmidecode -t {dmi_type})", lambda: _dmidecode_section(dmi_type, privilege)))

    output: list[str] = []
    for title, producer in sections:
        output.append(f"=== {title} ===")
        try:
            output.extend(producer())
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            log.debug("Snapshot section %r unavailable: %s", title, exc)
            output.append(NOT_AVAILABLE)
        output.append("")
    return "\n".join(output)


def snapshot_filename(result_id: str | None, suite: str, now: datetime | None = None) -> str:
    """``<result-id>-system-snapshot.txt`` with a timestamped fallback."""
    if not result_id:
        now = now or datetime.now()
        result_id = f"{suite}-benchmark-{now.strftime('%Y-%m-%d-%H%M%S')}"
    return f"{result_id}-system-snapshot.txt"


def capture_snapshot(
    path: Path,
    context: SnapshotContext,
    sys_root: Path = SYS_ROOT,
    proc_root: Path = PROC_ROOT,
) -> Path:
    """Write the environment snapshot once and return its absolute path."""
    path.write_text(build_snapshot(context, sys_root, proc_root), encoding="utf-8")
    resolved = path.resolve()
    print(f"System snapshot saved to: {resolved}")
    return resolved
