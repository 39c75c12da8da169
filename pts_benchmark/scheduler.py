"""I/O scheduler recommendation and application per device type."""

from __future__ import annotations

import logging
from pathlib import Path

from .devices import SYS_ROOT, block_device_name, classify
from .models import DeviceClassification, DeviceType, SchedulerOutcome, SchedulerStatus
from .privileges import Privilege
from .utils import read_sysfs_value


log = logging.getLogger(__name__)

# No seek penalty (or the hypervisor schedules): a guest scheduler only adds CPU work.
# Rotational media benefits from deadline-based seek reordering.
SCHEDULER_POLICY: dict[DeviceType, str] = {
    DeviceType.NVME: "none",
    DeviceType.SSD: "none",
    DeviceType.VIRTUAL: "none",
    DeviceType.HDD: "mq-deadline",
    DeviceType.UNKNOWN: "mq-deadline",
}
DEFAULT_SCHEDULER = "mq-deadline"


def recommend(device_type: DeviceType) -> str:
    """Recommended scheduler for a device type; total over all categories."""
    return SCHEDULER_POLICY.get(device_type, DEFAULT_SCHEDULER)


def parse_scheduler_line(line: str) -> tuple[str, tuple[str, ...]]:
    """Split ``"[mq-deadline] none kyber"`` into the active and available schedulers."""
    available: list[str] = []
    current = ""
    for token in line.split():
        if token.startswith("[") and token.endswith("]"):
            token = token[1:-1]
            current = token
        available.append(token)
    if not current and len(available) == 1:
        current = available[0]
    return current, tuple(available)


def scheduler_path(device_path: str, sys_root: Path = SYS_ROOT) -> Path:
    return sys_root / "block" / block_device_name(device_path, sys_root) / "queue" / "scheduler"


def read_scheduler(device_path: str, sys_root: Path = SYS_ROOT) -> tuple[str, tuple[str, ...]] | None:
    line = read_sysfs_value(scheduler_path(device_path, sys_root))
    if line is None:
        return None
    return parse_scheduler_line(line)


def apply(
    device_path: str,
    scheduler: str,
    privilege: Privilege,
    sys_root: Path = SYS_ROOT,
) -> SchedulerOutcome:
    """Set the scheduler when it is safe to do so; never raises."""
    path = scheduler_path(device_path, sys_root)
    state = read_scheduler(device_path, sys_root)
    if state is None:
        return SchedulerOutcome(
            SchedulerStatus.SKIPPED,
            scheduler,
            message=f"I/O scheduler interface not available for {device_path}",
        )

    current, available = state
    if current == scheduler:
        return SchedulerOutcome(SchedulerStatus.OK, scheduler, current, available, message="no change needed")

    if scheduler not in available:
        return SchedulerOutcome(
            SchedulerStatus.WARNING,
            scheduler,
            current,
            available,
            message=f"'{scheduler}' unavailable for {device_path} (available: {' '.join(available)})",
        )

    if not privilege.has_privilege:
        return SchedulerOutcome(
            SchedulerStatus.WARNING,
            scheduler,
            current,
            available,
            message=f"insufficient privileges; proceeding with '{current}'",
        )

    try:
        privilege.write_file(path, scheduler)
    except OSError as exc:
        return SchedulerOutcome(
            SchedulerStatus.WARNING,
            scheduler,
            current,
            available,
            message=f"could not set '{scheduler}': {exc}; proceeding with '{current}'",
        )
    return SchedulerOutcome(
        SchedulerStatus.OK,
        scheduler,
        current,
        available,
        changed=True,
        message=f"scheduler set to '{scheduler}'",
    )


def configure_io_scheduler(
    device_path: str,
    privilege: Privilege,
    sys_root: Path = SYS_ROOT,
    classification: DeviceClassification | None = None,
) -> SchedulerOutcome:
    """Classify a device, then apply and log the recommended scheduler."""
    classification = classification or classify(device_path, sys_root)
    recommended = recommend(classification.device_type)
    outcome = apply(device_path, recommended, privilege, sys_root)

    log.info(
        "%s: driver=%s type=%s scheduler current=%s recommended=%s",
        device_path,
        classification.controller_driver,
        classification.device_type.value,
        outcome.current or "n/a",
        recommended,
    )
    if outcome.status is SchedulerStatus.WARNING:
        log.warning("%s: %s", device_path, outcome.message)
    else:
        log.info("%s: %s", device_path, outcome.message)
    return outcome
