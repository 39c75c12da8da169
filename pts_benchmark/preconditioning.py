"""SSD steady-state preconditioning with full-device sequential writes.

Two sequential write passes over the raw block device move a flash device from
a rested or fresh state to steady state: the first pass clears idle caches and
triggers garbage collection, the second confirms the drive has stabilised under
sustained write pressure. This runs before mkfs so the whole addressable range
is covered regardless of filesystem overhead. ALL DATA ON THE DEVICE IS LOST.
"""

from __future__ import annotations

import logging
import subprocess

from .errors import PreconditioningError
from .models import DeviceType, PreconditionResult
from .privileges import Privilege
from .utils import command_exists, run_command


log = logging.getLogger(__name__)

PRECONDITION_PASSES = 2
PRECONDITION_BLOCK_SIZE = "128k"
PRECONDITION_IODEPTH = 32
PRECONDITION_TYPES = frozenset({DeviceType.NVME, DeviceType.SSD, DeviceType.VIRTUAL})

_SKIP_REASONS = {
    DeviceType.HDD: "HDD: sequential fills do not meaningfully move HDDs to steady state",
    DeviceType.UNKNOWN: "device type unknown: cannot determine if preconditioning is safe",
}


def fio_command(device: str, pass_number: int) -> list[str]:
    return [
        "fio",
        f"--name=precond-seq{pass_number}",
        f"--filename={device}",
        "--rw=write",
        f"--bs={PRECONDITION_BLOCK_SIZE}",
        "--ioengine=libaio",
        f"--iodepth={PRECONDITION_IODEPTH}",
        "--direct=1",
        "--output=/dev/null",
    ]


def precondition(
    device: str,
    device_type: DeviceType,
    privilege: Privilege,
    timeout: float | None = None,
) -> PreconditionResult:
    """Run the write passes when the device type and privileges allow it.

    The caller must hold exclusive access to the device. Raises
    PreconditioningError when a pass fails.
    """
    if device_type not in PRECONDITION_TYPES:
        reason = _SKIP_REASONS.get(device_type, f"not applicable to {device_type.value} devices")
        log.info("Pre-conditioning %s skipped: %s", device, reason)
        return PreconditionResult(ran=False, reason=reason)

    if not privilege.has_privilege:
        reason = "insufficient privileges to write to raw block device"
        log.warning("Pre-conditioning %s skipped: %s", device, reason)
        return PreconditionResult(ran=False, reason=reason)

    if not command_exists("fio"):
        reason = "fio not found; install fio as a system package"
        log.warning("Pre-conditioning %s skipped: %s", device, reason)
        return PreconditionResult(ran=False, reason=reason)

    for pass_number in range(1, PRECONDITION_PASSES + 1):
        print(
            f"  Pass {pass_number}/{PRECONDITION_PASSES}: sequential write "
            f"({PRECONDITION_BLOCK_SIZE} blocks, qdepth={PRECONDITION_IODEPTH})..."
        )
        command = privilege.command(fio_command(device, pass_number))
        try:
            _, _, returncode = run_command(command, capture=False, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise PreconditioningError(f"pass {pass_number} on {device} timed out after {exc.timeout:g}s") from exc
        if returncode != 0:
            raise PreconditioningError(f"pass {pass_number} on {device} failed with exit code {returncode}")

    return PreconditionResult(ran=True, passes=PRECONDITION_PASSES)
