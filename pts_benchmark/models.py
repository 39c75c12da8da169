"""Data models for resources, characterizations, run steps and reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class DeviceType(str, Enum):
    """Storage device category derived from the kernel driver chain."""

    NVME = "nvme"
    SSD = "ssd"
    HDD = "hdd"
    VIRTUAL = "virtual"
    UNKNOWN = "unknown"


class SchedulerStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    WARNING = "warning"


class BufferStatus(str, Enum):
    ADEQUATE = "adequate"
    INSUFFICIENT = "insufficient"
    SKIPPED = "skipped"


class Phase(str, Enum):
    """Lifecycle phase a run step belongs to."""

    PRECONDITION = "precondition"
    PREPARE = "prepare"
    INSTALL = "install"
    EXECUTE = "execute"
    UPLOAD = "upload"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class LocateStatus(str, Enum):
    FOUND = "found"
    NONE = "none"
    AMBIGUOUS = "ambiguous"


@dataclass(frozen=True)
class StorageResource:
    """A block device under test and the label naming its mount point and results."""

    device_path: str
    label: str

    def to_dict(self) -> dict[str, object]:
        return {"device_path": self.device_path, "label": self.label}


@dataclass(frozen=True)
class HostResource:
    """The local host, the single resource of CPU, memory and network runs."""

    label: str

    def to_dict(self) -> dict[str, object]:
        return {"label": self.label}


@dataclass(frozen=True)
class NetworkPath:
    """Path to a benchmark peer; the interface is auto-detected when not given."""

    peer_address: str | None = None
    interface: str | None = None
    nic_speed_override: int | None = None


@dataclass(frozen=True)
class DeviceClassification:
    device_path: str
    device_type: DeviceType
    driver_chain: tuple[str, ...] = ()
    controller_driver: str = "unknown"
    rotational: bool | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "device_path": self.device_path,
            "device_type": self.device_type.value,
            "driver_chain": list(self.driver_chain),
            "controller_driver": self.controller_driver,
            "rotational": self.rotational,
        }


@dataclass(frozen=True)
class SchedulerOutcome:
    status: SchedulerStatus
    recommended: str
    current: str = ""
    available: tuple[str, ...] = ()
    changed: bool = False
    message: str = ""


@dataclass(frozen=True)
class BufferCheck:
    """Adequacy of system-wide socket buffer ceilings for a link's BDP."""

    status: BufferStatus
    reason: str = ""
    required_bytes: int | None = None
    rmem_max: int = 0
    wmem_max: int = 0
    rtt_ms: float | None = None
    rx_ceiling_gbps: float | None = None
    tx_ceiling_gbps: float | None = None
    local_commands: tuple[str, ...] = ()
    remote_instruction: str = ""


@dataclass(frozen=True)
class LinkCharacterization:
    interface: str | None
    speed_mbps: int | None
    rtt_ms: float | None
    stream_count: int
    buffer_check: BufferCheck

    @property
    def required_buffer_bytes(self) -> int | None:
        return self.buffer_check.required_bytes

    def to_dict(self) -> dict[str, object]:
        return {
            "interface": self.interface,
            "speed_mbps": self.speed_mbps,
            "rtt_ms": self.rtt_ms,
            "stream_count": self.stream_count,
            "required_buffer_bytes": self.required_buffer_bytes,
            "buffer_status": self.buffer_check.status.value,
        }


@dataclass(frozen=True)
class PreconditionResult:
    ran: bool
    reason: str = ""
    passes: int = 0


@dataclass(frozen=True)
class TestCase:
    """One execute step: a test profile plus the options and result name for this run."""

    __test__ = False  # not a pytest test class

    profile: str
    label: str = ""
    preset_options: tuple[str, ...] = ()
    result_name: str = ""

    @property
    def short_name(self) -> str:
        """Profile name without its repository prefix (``pts/fio`` -> ``fio``)."""
        return self.profile.rsplit("/", 1)[-1]

    @property
    def name(self) -> str:
        return self.label or self.short_name


@dataclass(frozen=True)
class RunStep:
    resource: str
    test: str | None
    phase: Phase

    def describe(self) -> str:
        return f"{self.resource}/{self.test or '-'} ({self.phase.value})"


@dataclass(frozen=True)
class LedgerEntry:
    step: RunStep
    outcome: Outcome
    reason: str = ""
    result_name: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "resource": self.step.resource,
            "test": self.step.test,
            "phase": self.step.phase.value,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "result_name": self.result_name,
        }


@dataclass(frozen=True)
class LocatedArtifact:
    status: LocateStatus
    path: Path | None = None
    candidates: tuple[str, ...] = ()


@dataclass
class SystemInfo:
    """System information."""

    platform: str
    machine: str
    processor: str
    python_version: str
    cpu_count: int | None
    hostname: str
    os_name: str = ""
    os_version: str = ""
    kernel_version: str = ""
    cpu_model: str = ""
    memory_total_bytes: int | None = None

    def to_dict(self) -> dict[str, object]:
        """Convert to dict for JSON serialization."""
        return {
            "platform": self.platform,
            "machine": self.machine,
            "processor": self.processor,
            "python_version": self.python_version,
            "cpu_count": self.cpu_count,
            "hostname": self.hostname,
            "os_name": self.os_name,
            "os_version": self.os_version,
            "kernel_version": self.kernel_version,
            "cpu_model": self.cpu_model,
            "memory_total_bytes": self.memory_total_bytes,
        }


@dataclass(frozen=True)
class CpuTopology:
    sockets: int
    cores_per_socket: int
    threads_per_core: int

    @property
    def total_threads(self) -> int:
        return self.sockets * self.cores_per_socket * self.threads_per_core


@dataclass
class RunReport:
    """Complete report - top-level data structure."""

    generated_at: datetime
    suite: str
    result_id: str
    system: SystemInfo
    entries: list[LedgerEntry]
    snapshot_path: str = ""
    interrupted: bool = False
    resources: list[dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Only convert to dict for JSON serialization."""
        return {
            "generated_at": self.generated_at.isoformat(),
            "suite": self.suite,
            "result_id": self.result_id,
            "system": self.system.to_dict(),
            "resources": self.resources,
            "snapshot_path": self.snapshot_path,
            "interrupted": self.interrupted,
            "steps": [entry.to_dict() for entry in self.entries],
        }
