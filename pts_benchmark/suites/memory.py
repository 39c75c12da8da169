"""Memory suite: bandwidth and latency benchmarks across all option combinations."""

from __future__ import annotations

import argparse

from ..models import TestCase
from ..pts import ToolConfig
from ..results import ResultLocator
from ..sequencer import RunSequencer
from .base import HostDriver, RunContext, SuiteBase, host_resource, upload_results


# Every access pattern and element size of each profile runs, because
# batch-setup is configured to run all test option combinations.
DEFAULT_TESTS = ("pts/stream", "pts/ramspeed", "pts/tinymembench", "pts/cachebench")


class MemorySuite(SuiteBase):
    name = "memory"
    description = "Memory bandwidth, latency and cache hierarchy benchmarks"
    default_tests = DEFAULT_TESTS
    dmidecode_type = "17"
    include_thp = True

    def run(self, args: argparse.Namespace, context: RunContext) -> None:
        pts = context.pts
        print("Setting up Phoronix Test Suite in batch mode (all option combinations)...")
        pts.batch_setup(run_all_combinations=True)

        self.capture_snapshot(context, self.snapshot_context(args, context))

        tests = [
            TestCase(profile=profile, result_name=f"{context.result_id}_{profile.rsplit('/', 1)[-1]}")
            for profile in self.tests(args)
        ]
        driver = HostDriver(pts, ToolConfig(results_description=context.result_name))
        host = host_resource()
        context.resources.append(host.to_dict())
        RunSequencer(driver, ResultLocator(pts.results_dir), context.ledger).run_all([host], tests)

        upload_results(context)
