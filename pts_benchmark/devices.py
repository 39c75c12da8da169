"""Storage device classification from the kernel driver chain in sysfs.

The device name and the rotational flag are unreliable for paravirtual disks in
virtual machines, so the category is derived from the driver bound to the block
device. SCSI-layer disks are always bound to the generic ``sd`` driver; for those
the device tree is walked upwards, past transport-class shims, until the host
controller driver is found.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .models import DeviceClassification, DeviceType
from .utils import read_sysfs_value


log = logging.getLogger(__name__)

SYS_ROOT = Path("/sys")

# Generic SCSI disk driver; the real controller sits further up the tree.
GENERIC_SCSI_DRIVER = "sd"

# Drivers skipped while walking up from an sd-bound disk. Extend for new HBAs.
TRANSPORT_DRIVERS: set[str] = {
    "sd",
    "scsi_transport_sas",
    "scsi_transport_fc",
    "scsi_transport_spi",
}

NVME_DRIVERS: set[str] = {"nvme"}

# The hypervisor schedules I/O for these; the guest sees no physical medium.
PARAVIRTUAL_DRIVERS: set[str] = {
    "virtio_blk",
    "virtio_scsi",
    "vmw_pvscsi",
    "xen-blkfront",
    "xen_blkfront",
}


def _driver_name(node: Path) -> str | None:
    link = node / "driver"
    if not link.is_symlink():
        return None
    try:
        return os.path.basename(os.readlink(link))
    except OSError:
        return None


def block_device_name(device_path: str, sys_root: Path = SYS_ROOT) -> str:
    """Kernel name of the whole disk behind a device path (partitions map to their disk)."""
    name = Path(os.path.realpath(device_path)).name
    class_entry = sys_root / "class" / "block" / name
    if (class_entry / "partition").exists():
        try:
            return class_entry.resolve().parent.name
        except (OSError, RuntimeError):
            return name
    return name


def resolve_driver_chain(dev_name: str, sys_root: Path = SYS_ROOT) -> tuple[str, ...]:
    """Drivers from the one bound to the block device up to the host controller.

    Returns an empty tuple when the device has no driver link. For ``sd`` disks the
    chain lists every driver seen on the way up, ending with the first one that is
    not a transport shim (or with the last shim when the walk reaches the sysfs root).
    """
    device_node = sys_root / "block" / dev_name / "device"
    direct = _driver_name(device_node)
    if direct is None:
        return ()

    chain = [direct]
    if direct != GENERIC_SCSI_DRIVER:
        return tuple(chain)

    try:
        resolved = device_node.resolve(strict=True)
        root = sys_root.resolve(strict=True)
    except (OSError, RuntimeError):
        return tuple(chain)

    # Path.parents is finite, so the walk ends even with odd symlinks.
    for parent in resolved.parents:
        if parent == root or root not in parent.parents:
            break
        driver = _driver_name(parent)
        if driver is None:
            continue
        chain.append(driver)
        if driver not in TRANSPORT_DRIVERS:
            break
    return tuple(chain)


def read_rotational(dev_name: str, sys_root: Path = SYS_ROOT) -> bool | None:
    value = read_sysfs_value(sys_root / "block" / dev_name / "queue" / "rotational")
    if value == "0":
        return False
    if value == "1":
        return True
    return None


def classify(device_path: str, sys_root: Path = SYS_ROOT) -> DeviceClassification:
    """Classify a block device; never raises, returns UNKNOWN when sysfs is silent."""
    dev_name = block_device_name(device_path, sys_root)
    chain = resolve_driver_chain(dev_name, sys_root)
    rotational = read_rotational(dev_name, sys_root)

    if not chain:
        log.debug("No driver link for %s; device type unknown", device_path)
        return DeviceClassification(device_path, DeviceType.UNKNOWN, chain, "unknown", rotational)

    controller = chain[-1]
    if controller in NVME_DRIVERS:
        device_type = DeviceType.NVME
    elif controller in PARAVIRTUAL_DRIVERS:
        device_type = DeviceType.VIRTUAL
    elif rotational is None:
        device_type = DeviceType.UNKNOWN
    else:
        # Physical HBA (ahci, mpt3sas, megaraid_sas, hpsa, ...) or unresolved sd.
        device_type = DeviceType.HDD if rotational else DeviceType.SSD

    return DeviceClassification(device_path, device_type, chain, controller, rotational)
