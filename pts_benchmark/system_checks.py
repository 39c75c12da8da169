"""System environment checks for benchmarking."""

from __future__ import annotations

import logging
import os
import sys
import textwrap
import time
from collections.abc import Callable
from pathlib import Path

from .privileges import Privilege


log = logging.getLogger(__name__)

SYS_ROOT = Path("/sys")
PROC_ROOT = Path("/proc")
THERMAL_WARNING_MILLIDEGREES = 80000
STEAL_WARNING_PERCENT = 5.0
STEAL_SAMPLE_SECONDS = 1.0


def _cpufreq_governor_files(sys_root: Path) -> list[Path]:
    cpu_dir = sys_root / "devices" / "system" / "cpu"
    return [
        cpu_path / "cpufreq" / "scaling_governor"
        for cpu_path in sorted(cpu_dir.glob("cpu[0-9]*"))
        if (cpu_path / "cpufreq" / "scaling_governor").exists()
    ]


def check_cpu_governor(sys_root: Path = SYS_ROOT) -> list[str]:
    """Check CPU frequency scaling governor settings.

    Returns a list of warning messages if issues are detected.
    """
    warnings_list = []
    governors = set()

    for governor_file in _cpufreq_governor_files(sys_root):
        try:
            governors.add(governor_file.read_text().strip())
        except OSError:
            pass

    if not governors:
        # No cpufreq support detected
        return warnings_list

    if governors != {"performance"}:
        gov_list = ", ".join(f"'{g}'" for g in sorted(governors))
        warnings_list.append(
            f"CPU frequency scaling governor is {gov_list} (not 'performance'). "
            f"Results may vary significantly between runs due to dynamic CPU frequency scaling."
        )

    return warnings_list


def set_performance_governor(privilege: Privilege, sys_root: Path = SYS_ROOT) -> bool:
    """Switch every CPU to the performance governor; False if any write failed."""
    ok = True
    for governor_file in _cpufreq_governor_files(sys_root):
        try:
            privilege.write_file(governor_file, "performance")
        except OSError as exc:
            log.warning("Could not set performance governor via %s: %s", governor_file, exc)
            ok = False
    return ok


def offer_performance_governor(
    privilege: Privilege,
    sys_root: Path = SYS_ROOT,
    ask: Callable[[str], str] = input,
    interactive: bool | None = None,
) -> list[str]:
    """Check the governor and, on a terminal with privilege, offer to fix it."""
    warnings_list = check_cpu_governor(sys_root)
    if not warnings_list:
        return warnings_list
    if interactive is None:
        interactive = sys.stdin.isatty()
    if not (interactive and privilege.has_privilege):
        return warnings_list

    try:
        answer = ask("Switch the CPU governor to 'performance' for this run? [y/N] ")
    except EOFError:
        return warnings_list
    if answer.strip().lower() not in ("y", "yes"):
        return warnings_list
    if set_performance_governor(privilege, sys_root):
        print("CPU governor set to 'performance'.")
    return check_cpu_governor(sys_root)


def check_thermal_zones(sys_root: Path = SYS_ROOT) -> list[str]:
    """Warn about thermal zones at or above the throttling threshold."""
    warnings_list = []
    for zone in sorted((sys_root / "class" / "thermal").glob("thermal_zone*")):
        try:
            temp = int((zone / "temp").read_text().strip())
        except (OSError, ValueError):
            continue
        if temp >= THERMAL_WARNING_MILLIDEGREES:
            warnings_list.append(
                f"{zone.name} is at {temp // 1000}°C. Thermal throttling may reduce benchmark results."
            )
    return warnings_list


def check_load_average(proc_root: Path = PROC_ROOT, cpu_count: int | None = None) -> list[str]:
    """Warn when the 1-minute load average exceeds the CPU count."""
    cpu_count = cpu_count or os.cpu_count()
    try:
        load = float((proc_root / "loadavg").read_text().split()[0])
    except (OSError, ValueError, IndexError):
        return []
    if cpu_count and load > cpu_count:
        return [
            f"1-minute load average is {load:.2f} with {cpu_count} CPUs. "
            f"Other workloads are competing with the benchmark."
        ]
    return []


def read_cpu_times(proc_root: Path = PROC_ROOT) -> tuple[int, int] | None:
    """(total, steal) jiffies from the aggregate cpu line of /proc/stat."""
    try:
        with (proc_root / "stat").open(encoding="utf-8") as handle:
            fields = handle.readline().split()
    except OSError:
        return None
    if len(fields) < 9 or fields[0] != "cpu":
        return None
    try:
        # user nice system idle iowait irq softirq steal
        values = [int(value) for value in fields[1:9]]
    except ValueError:
        return None
    return sum(values), values[7]


def check_steal_time(
    proc_root: Path = PROC_ROOT,
    interval: float = STEAL_SAMPLE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Warn when the hypervisor steals a noticeable share of CPU time."""
    first = read_cpu_times(proc_root)
    if first is None:
        return []
    sleep(interval)
    second = read_cpu_times(proc_root)
    if second is None:
        return []
    total = second[0] - first[0]
    if total <= 0:
        return []
    steal_pct = 100.0 * (second[1] - first[1]) / total
    if steal_pct >= STEAL_WARNING_PERCENT:
        return [
            f"CPU steal time is {steal_pct:.1f}%. The hypervisor is taking CPU time from this guest; "
            f"results will be noisy."
        ]
    return []


def check_transparent_hugepages(sys_root: Path = SYS_ROOT) -> list[str]:
    """Warn when THP is 'always': khugepaged compaction adds memory latency jitter."""
    enabled = sys_root / "kernel" / "mm" / "transparent_hugepage" / "enabled"
    try:
        value = enabled.read_text().strip()
    except OSError:
        return []
    if "[always]" in value:
        return [
            "Transparent huge pages are set to 'always'. Background compaction can skew memory "
            "bandwidth and latency results; consider 'madvise'."
        ]
    return []


def check_system_environment(
    *,
    include_thp: bool = False,
    sys_root: Path = SYS_ROOT,
    proc_root: Path = PROC_ROOT,
    governor_warnings: list[str] | None = None,
) -> list[str]:
    """Run all system environment checks.

    Returns a list of warning messages.
    """
    warnings_list = []

    if governor_warnings is None:
        governor_warnings = check_cpu_governor(sys_root)
    warnings_list.extend(governor_warnings)
    warnings_list.extend(check_thermal_zones(sys_root))
    warnings_list.extend(check_load_average(proc_root))
    warnings_list.extend(check_steal_time(proc_root))
    if include_thp:
        warnings_list.extend(check_transparent_hugepages(sys_root))

    return warnings_list


def print_system_warnings(warnings_list: list[str], prefix: str = "⚠ ") -> None:
    """Print system warning messages to stderr."""
    if not warnings_list:
        return

    print("\n" + "=" * 80, file=sys.stderr)
    print("SYSTEM ENVIRONMENT WARNINGS", file=sys.stderr)
    print("=" * 80, file=sys.stderr)

    for warning in warnings_list:
        # Wrap long lines
        wrapped = textwrap.fill(warning, width=78, initial_indent=prefix, subsequent_indent="  ")
        print(wrapped, file=sys.stderr)

    print("\nThese warnings may affect benchmark consistency and accuracy.", file=sys.stderr)
    print("=" * 80 + "\n", file=sys.stderr)
