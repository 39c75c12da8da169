"""Target disk parsing, validation, formatting and release."""

from __future__ import annotations

import getpass
import logging
import os
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from .devices import SYS_ROOT, block_device_name
from .errors import ResourcePreparationError, UsageError
from .models import StorageResource
from .privileges import Privilege
from .utils import run_command


log = logging.getLogger(__name__)

MOUNT_ROOT = Path("/mnt")
PROC_ROOT = Path("/proc")
LABEL_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")
# mkfs.xfs rejects longer filesystem labels.
XFS_LABEL_MAX = 12
PROTECTED_MOUNT_POINTS = frozenset({"/", "/boot", "/boot/efi"})


def parse_disk_spec(spec: str) -> StorageResource:
    """Parse ``<device>;<label>``."""
    parts = [part.strip() for part in spec.split(";")]
    if len(parts) != 2 or not all(parts):
        raise UsageError(f"Invalid disk entry {spec!r}; expected <device>;<label>")
    device, label = parts
    if not LABEL_PATTERN.match(label):
        raise UsageError(f"Invalid label {label!r}; use letters, digits, '.', '_' or '-'")
    return StorageResource(device_path=device, label=label)


def read_disk_file(path: Path) -> list[str]:
    """Disk entries from a file: one per line, '#' comments and blank lines ignored."""
    if not path.is_file():
        raise UsageError(f"Disk file not found: {path}")
    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        entries.append(stripped)
    return entries


def protected_devices(proc_root: Path = PROC_ROOT, sys_root: Path = SYS_ROOT) -> set[str]:
    """Disks backing the live root or boot filesystems."""
    try:
        lines = (proc_root / "mounts").read_text(encoding="utf-8").splitlines()
    except OSError:
        return set()
    devices = set()
    for line in lines:
        fields = line.split()
        if len(fields) < 2 or not fields[0].startswith("/dev/"):
            continue
        if fields[1] in PROTECTED_MOUNT_POINTS:
            devices.add(block_device_name(fields[0], sys_root))
    return devices


def validate_disks(
    resources: Sequence[StorageResource],
    *,
    proc_root: Path = PROC_ROOT,
    sys_root: Path = SYS_ROOT,
    require_block_device: bool = True,
) -> None:
    """Reject duplicate labels, non-block devices and disks holding / or /boot."""
    if not resources:
        raise UsageError("No target disks specified. Use --disk or --disk-file.")
    seen: set[str] = set()
    for resource in resources:
        if resource.label in seen:
            raise UsageError(f"Duplicate disk label: {resource.label}")
        seen.add(resource.label)
        if require_block_device and not Path(resource.device_path).is_block_device():
            raise UsageError(f"{resource.device_path} is not a block device")

    protected = protected_devices(proc_root, sys_root)
    for resource in resources:
        if block_device_name(resource.device_path, sys_root) in protected:
            raise UsageError(f"{resource.device_path} holds a mounted root or boot filesystem")


def mount_point_for(resource: StorageResource, mount_root: Path = MOUNT_ROOT) -> Path:
    return mount_root / resource.label


def _run_privileged(privilege: Privilege, command: Sequence[str]) -> int:
    _, _, returncode = run_command(privilege.command(command), capture=False)
    return returncode


def prepare_disk(resource: StorageResource, privilege: Privilege, mount_root: Path = MOUNT_ROOT) -> Path:
    """Format the device as XFS and mount it; raises ResourcePreparationError."""
    device = resource.device_path
    mount_point = mount_point_for(resource, mount_root)
    print(f"--- Preparing {device} as {resource.label} ---")
    log.warning("All data on %s will be erased.", device)

    # Ignore the error if it was not mounted.
    _run_privileged(privilege, ["umount", device])

    steps: Iterable[tuple[str, list[str]]] = (
        ("format", ["mkfs.xfs", "-f", "-L", resource.label[:XFS_LABEL_MAX], device]),
        ("create mount point", ["mkdir", "-p", str(mount_point)]),
        ("mount", ["mount", device, str(mount_point)]),
        ("take ownership of", ["chown", f"{getpass.getuser()}:", str(mount_point)]),
    )
    for action, command in steps:
        returncode = _run_privileged(privilege, command)
        if returncode != 0:
            raise ResourcePreparationError(f"could not {action} {device} (exit code {returncode})")

    print(f"Disk {device} mounted at {mount_point} and ready for testing.")
    return mount_point


def is_mounted(mount_point: Path) -> bool:
    _, _, returncode = run_command(["mountpoint", "-q", str(mount_point)])
    return returncode == 0


def _release_step(privilege: Privilege, command: list[str], errors: list[str]) -> None:
    try:
        returncode = _run_privileged(privilege, command)
    except OSError as exc:
        errors.append(f"{command[0]} could not be run: {exc}")
        return
    if returncode != 0:
        errors.append(f"{command[0]} {command[-1]} failed")


def release_disk(resource: StorageResource, privilege: Privilege, mount_root: Path = MOUNT_ROOT) -> list[str]:
    """Unmount, remove the mount point, then wipe filesystem signatures.

    Every stage is attempted; failures are returned rather than raised.
    """
    device = resource.device_path
    mount_point = mount_point_for(resource, mount_root)
    errors: list[str] = []
    print(f"--- Releasing disk {device} ({resource.label}) ---")

    try:
        mounted = is_mounted(mount_point)
    except OSError as exc:
        errors.append(f"could not check whether {mount_point} is mounted: {exc}")
        mounted = False

    if mounted:
        print(f"Unmounting {mount_point}...")
        _release_step(privilege, ["umount", str(mount_point)], errors)

    if os.path.isdir(mount_point):
        print(f"Removing mount point directory {mount_point}...")
        _release_step(privilege, ["rmdir", str(mount_point)], errors)

    print(f"Wiping filesystem signatures from {device}...")
    _release_step(privilege, ["wipefs", "--all", "--force", device], errors)

    for error in errors:
        log.warning("Release of %s: %s", resource.label, error)
    return errors
