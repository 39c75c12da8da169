"""Base definitions for benchmark suites."""

from __future__ import annotations

import argparse
import logging
import platform
from abc import ABC
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path

from ..devices import SYS_ROOT
from ..disks import MOUNT_ROOT
from ..errors import ToolInvocationError
from ..ledger import RunLedger
from ..models import HostResource, LocatedArtifact, Phase, RunStep, TestCase
from ..output import sanitize_for_filename
from ..privileges import Privilege
from ..pts import PhoronixTestSuite, ToolConfig
from ..sequencer import ResourceDriver
from ..system_info import PROC_ROOT, SnapshotContext, capture_snapshot, snapshot_filename


log = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Shared state for one suite run."""

    pts: PhoronixTestSuite
    privilege: Privilege
    ledger: RunLedger
    result_id: str
    result_name: str
    upload: bool = False
    output_dir: Path = field(default_factory=Path.cwd)
    sys_root: Path = SYS_ROOT
    proc_root: Path = PROC_ROOT
    mount_root: Path = MOUNT_ROOT
    snapshot_path: Path | None = None
    resources: list[dict[str, object]] = field(default_factory=list)


def parse_tests(value: Sequence[str] | None, defaults: Sequence[str]) -> list[str]:
    """Requested profiles, keeping the first of any that share a short name.

    Results are named after the short name, so `pts/fio` and `fio` would
    collide on the same result.
    """
    profiles: dict[str, str] = {}
    for profile in value or defaults:
        short_name = profile.rsplit("/", 1)[-1]
        if short_name in profiles:
            log.warning("Ignoring %s: %s is already selected", profile, profiles[short_name])
            continue
        profiles[short_name] = profile
    return list(profiles.values())


def host_resource() -> HostResource:
    return HostResource(label=platform.node() or "localhost")


class SuiteBase(ABC):
    """Base class for all suites."""

    name: str
    description: str
    default_tests: tuple[str, ...] = ()
    dmidecode_type: str | None = None
    include_thp = False
    accepts_tests = False
    run_system_checks = True

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register suite-specific command-line options."""

    def validate(self, args: argparse.Namespace) -> None:
        """Reject invalid options before any side effect; raises UsageError."""

    def run_service(self, args: argparse.Namespace, context: RunContext) -> int | None:
        """Long-running mode that bypasses the ledger; None when not requested."""
        return None

    def run(self, args: argparse.Namespace, context: RunContext) -> None:
        raise NotImplementedError(f"{self.__class__.__name__} must implement run()")

    def tests(self, args: argparse.Namespace) -> list[str]:
        return parse_tests(getattr(args, "tests", None), self.default_tests)

    def capture_snapshot(self, context: RunContext, snapshot: SnapshotContext) -> Path | None:
        path = context.output_dir / snapshot_filename(sanitize_for_filename(context.result_id), self.name)
        try:
            context.snapshot_path = capture_snapshot(path, snapshot, context.sys_root, context.proc_root)
        except OSError as exc:
            log.warning("Could not write system snapshot %s: %s", path, exc)
        return context.snapshot_path

    def snapshot_context(self, args: argparse.Namespace, context: RunContext, **kwargs: object) -> SnapshotContext:
        return SnapshotContext(
            suite=self.name,
            result_id=context.result_id,
            result_name=context.result_name,
            tests=self.tests(args),
            include_thp=self.include_thp,
            dmidecode_type=self.dmidecode_type,
            privilege=context.privilege,
            **kwargs,  # type: ignore[arg-type]
        )


class HostDriver(ResourceDriver[HostResource]):
    """Install/run hooks for suites whose single resource is the local host."""

    def __init__(self, pts: PhoronixTestSuite, config: ToolConfig | None = None) -> None:
        self.pts = pts
        self.config = config or ToolConfig()

    def install(self, resource: HostResource, profile: str) -> None:
        self.pts.install(profile)

    def run_config(self, test: TestCase) -> ToolConfig:
        config = self.config.with_options(*test.preset_options)
        if test.result_name:
            config = replace(config, results_name=test.result_name)
        return config

    def execute(self, resource: HostResource, test: TestCase) -> None:
        self.pts.batch_run(test.profile, self.run_config(test))

    def collect(self, resource: HostResource, test: TestCase, artifact: LocatedArtifact) -> str | None:
        if artifact.path is not None:
            return artifact.path.name
        # Reusing an existing result name appends to that result.
        return test.result_name or None


def upload_results(context: RunContext) -> None:
    """Upload every completed result, recording each upload in the ledger."""
    if not context.upload:
        return
    print("--- Uploading results to OpenBenchmarking.org ---")
    config = ToolConfig(upload_name=context.result_name, upload_identifier=context.result_id)
    for entry in context.ledger.entries:
        step = entry.step
        if step.phase is not Phase.EXECUTE or not entry.result_name:
            continue
        upload_step = RunStep(step.resource, step.test, Phase.UPLOAD)
        print(f"Uploading result: {entry.result_name}")
        try:
            context.pts.upload_result(entry.result_name, config)
        except ToolInvocationError as exc:
            log.warning("Upload of %s failed: %s", entry.result_name, exc)
            context.ledger.record_failure(upload_step, str(exc))
            continue
        context.ledger.record_success(upload_step, entry.result_name)
    print("All uploads complete.")
