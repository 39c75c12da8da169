"""Storage suite: precondition, format, mount and benchmark each target disk."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Mapping
from pathlib import Path

from ..devices import SYS_ROOT, classify
from ..disks import (
    MOUNT_ROOT,
    mount_point_for,
    parse_disk_spec,
    prepare_disk,
    read_disk_file,
    release_disk,
    validate_disks,
)
from ..errors import ToolInvocationError
from ..models import DeviceClassification, LocatedArtifact, PreconditionResult, StorageResource, TestCase
from ..preconditioning import precondition
from ..privileges import Privilege
from ..pts import PhoronixTestSuite, ToolConfig
from ..results import ResultLocator, relocate
from ..scheduler import configure_io_scheduler
from ..sequencer import RunSequencer, ResourceDriver
from ..system_info import PROC_ROOT
from .base import RunContext, SuiteBase, upload_results


log = logging.getLogger(__name__)

DEFAULT_TESTS = ("iozone", "fio", "postmark", "compilebench")


def result_name_for(resource: StorageResource, test: TestCase) -> str:
    return f"{resource.label}_{test.short_name}_result"


def disks_from_args(args: argparse.Namespace) -> list[StorageResource]:
    entries = list(args.disk or [])
    if args.disk_file:
        entries.extend(read_disk_file(Path(args.disk_file)))
    return [parse_disk_spec(entry) for entry in entries]


class StorageDriver(ResourceDriver[StorageResource]):
    """Disk lifecycle: precondition, format and mount, install on the disk, release."""

    def __init__(
        self,
        pts: PhoronixTestSuite,
        privilege: Privilege,
        classifications: Mapping[str, DeviceClassification],
        *,
        mount_root: Path = MOUNT_ROOT,
        precondition_enabled: bool = True,
    ) -> None:
        self.pts = pts
        self.privilege = privilege
        self.classifications = classifications
        self.mount_root = mount_root
        self.precondition_enabled = precondition_enabled

    def _config(self, resource: StorageResource) -> ToolConfig:
        # Test binaries and their scratch files land on the disk under test.
        return ToolConfig(install_root=mount_point_for(resource, self.mount_root))

    def precondition(self, resource: StorageResource) -> PreconditionResult | None:
        if not self.precondition_enabled:
            return None
        classification = self.classifications[resource.label]
        print(f"--- Pre-conditioning {resource.label} ({resource.device_path}) ---")
        return precondition(resource.device_path, classification.device_type, self.privilege, self.pts.timeout)

    def prepare(self, resource: StorageResource) -> None:
        prepare_disk(resource, self.privilege, self.mount_root)

    def install(self, resource: StorageResource, profile: str) -> None:
        self.pts.install(profile, self._config(resource))

    def execute(self, resource: StorageResource, test: TestCase) -> None:
        config = self._config(resource).with_options(*test.preset_options)
        if test.short_name == "fio":
            config = config.with_options(
                f"pts/fio.auto-disk-mount-points={mount_point_for(resource, self.mount_root)}"
            )
        self.pts.batch_run(test.profile, config)

    def collect(self, resource: StorageResource, test: TestCase, artifact: LocatedArtifact) -> str | None:
        if artifact.path is None:
            return None
        return relocate(artifact.path, result_name_for(resource, test)).name

    def release(self, resource: StorageResource) -> None:
        release_disk(resource, self.privilege, self.mount_root)


def compare_results(pts: PhoronixTestSuite, tests: list[TestCase], results: list[str]) -> None:
    """Local side-by-side comparison of every disk's result for each test."""
    print("--- Generating local result comparisons ---")
    for test in tests:
        print("=" * 40)
        print(f"    Comparison for {test.short_name}")
        print("=" * 40)
        matching = [name for name in results if name.endswith(f"_{test.short_name}_result")]
        if not matching:
            print(f"No results found to compare for {test.short_name}.")
            continue
        try:
            pts.compare_results(matching)
        except ToolInvocationError as exc:
            log.warning("Comparison for %s failed: %s", test.short_name, exc)


class StorageSuite(SuiteBase):
    name = "storage"
    description = "Disk I/O benchmarks on freshly formatted XFS target disks"
    default_tests = DEFAULT_TESTS
    accepts_tests = True
    run_system_checks = False

    def __init__(self, proc_root: Path = PROC_ROOT, sys_root: Path = SYS_ROOT) -> None:
        self.proc_root = proc_root
        self.sys_root = sys_root

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-d",
            "--disk",
            action="append",
            metavar="DEVICE;LABEL",
            help="Target disk and label, e.g. '/dev/sdb;hdd1' (repeatable). ALL DATA ON IT IS ERASED.",
        )
        parser.add_argument(
            "-f",
            "--disk-file",
            metavar="PATH",
            help="File with one DEVICE;LABEL entry per line ('#' comments and blank lines ignored)",
        )
        parser.add_argument(
            "--skip-preconditioning",
            action="store_true",
            help="Skip the SSD steady-state write passes before formatting",
        )

    def validate(self, args: argparse.Namespace) -> None:
        validate_disks(disks_from_args(args), proc_root=self.proc_root, sys_root=self.sys_root)

    def run(self, args: argparse.Namespace, context: RunContext) -> None:
        disks = disks_from_args(args)
        tests = [TestCase(profile=name) for name in self.tests(args)]
        pts = context.pts

        print("Setting up Phoronix Test Suite in batch mode...")
        pts.batch_setup(run_all_combinations=False)

        print("--- Detecting device types and configuring I/O schedulers ---")
        classifications: dict[str, DeviceClassification] = {}
        for disk in disks:
            print(f"--- {disk.label} ({disk.device_path}) ---")
            classification = classify(disk.device_path, context.sys_root)
            outcome = configure_io_scheduler(disk.device_path, context.privilege, context.sys_root, classification)
            classifications[disk.label] = classification
            context.resources.append(
                {
                    **disk.to_dict(),
                    **classification.to_dict(),
                    "scheduler": outcome.current,
                    "scheduler_status": outcome.status.value,
                }
            )

        self.capture_snapshot(context, self.snapshot_context(args, context, disks=disks))

        if args.skip_preconditioning:
            print("--- Pre-conditioning skipped (--skip-preconditioning) ---")
        driver = StorageDriver(
            pts,
            context.privilege,
            classifications,
            mount_root=context.mount_root,
            precondition_enabled=not args.skip_preconditioning,
        )
        RunSequencer(driver, ResultLocator(pts.results_dir), context.ledger).run_all(disks, tests)

        upload_results(context)
        compare_results(pts, tests, context.ledger.completed_results)
