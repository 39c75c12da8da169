"""CPU suite: thread-count aware compute benchmarks with a warm-up run per test."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace

from ..errors import ToolInvocationError, UsageError
from ..models import CpuTopology, HostResource, TestCase
from ..pts import PhoronixTestSuite, ToolConfig
from ..results import ResultLocator
from ..sequencer import RunSequencer
from ..system_info import detect_cpu_topology
from .base import HostDriver, RunContext, SuiteBase, host_resource, upload_results


log = logging.getLogger(__name__)

DEFAULT_TESTS = (
    "pts/build-linux-kernel",  # integer, multi-threaded compilation
    "pts/compress-7zip",  # integer, multi-threaded LZMA compression
    "pts/c-ray",  # floating point, ray tracing
    "pts/openssl",  # cryptographic operations
    "pts/stockfish",  # branchy integer, chess-engine search
)
DEFAULT_RUNS = 3
THREADS_OPTION = "pts/build-linux-kernel.threads-to-use"
WARMUP_PREFIX = "warmup-"


def resolve_threads(requested: int | None, topology: CpuTopology | None) -> int:
    """Thread count for the run; never more than the host provides."""
    if topology is None:
        if requested:
            log.warning("Could not detect CPU topology from lscpu; trusting --threads %d", requested)
            return requested
        raise UsageError("Could not detect CPU topology from lscpu. Use --threads <N> to set the thread count.")
    if requested is None:
        return topology.total_threads
    if requested > topology.total_threads:
        raise UsageError(
            f"The specified number of threads ({requested}) is greater than the available threads "
            f"({topology.total_threads})."
        )
    return requested


def print_topology(topology: CpuTopology | None) -> None:
    print("--- Detecting CPU Resources ---")
    if topology is not None:
        print(f"Sockets:          {topology.sockets}")
        print(f"Cores per socket: {topology.cores_per_socket}")
        print(f"Threads per core: {topology.threads_per_core}")
        print(f"Total threads:    {topology.total_threads}")
    print("-" * 32)


class CpuDriver(HostDriver):
    """Runs one discarded warm-up pass before each timed test."""

    def __init__(self, pts: PhoronixTestSuite, config: ToolConfig, locator: ResultLocator, warmup_name: str) -> None:
        super().__init__(pts, config)
        self.locator = locator
        self.warmup_name = warmup_name

    def warm_up(self, test: TestCase) -> None:
        """Bring caches and branch predictors to steady state; the result is thrown away."""
        print("--- Warmup run (result discarded) ---")
        config = replace(self.run_config(test), force_times_to_run=1, results_name=self.warmup_name)
        before = self.locator.snapshot()
        try:
            self.pts.batch_run(test.profile, config)
        except ToolInvocationError as exc:
            log.warning("Warm-up run of %s failed: %s", test.name, exc)
        finally:
            for name in sorted(self.locator.snapshot() - before):
                self.pts.remove_result(name)

    def execute(self, resource: HostResource, test: TestCase) -> None:
        self.warm_up(test)
        print(f"--- Timed runs ({self.config.force_times_to_run}) ---")
        super().execute(resource, test)


class CpuSuite(SuiteBase):
    name = "cpu"
    description = "CPU throughput benchmarks sized to the detected thread count"
    default_tests = DEFAULT_TESTS
    accepts_tests = True
    dmidecode_type = "processor"

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "-t",
            "--threads",
            type=int,
            help="Number of threads to use (default: all threads detected by lscpu)",
        )
        parser.add_argument(
            "-r",
            "--runs",
            type=int,
            default=DEFAULT_RUNS,
            help=f"Timed runs per test (default: {DEFAULT_RUNS})",
        )

    def validate(self, args: argparse.Namespace) -> None:
        if args.threads is not None and args.threads < 1:
            raise UsageError("--threads must be a positive integer")
        if args.runs < 1:
            raise UsageError("--runs must be a positive integer")
        topology = detect_cpu_topology()
        print_topology(topology)
        args.threads_to_use = resolve_threads(args.threads, topology)

    def run(self, args: argparse.Namespace, context: RunContext) -> None:
        threads = args.threads_to_use
        pts = context.pts
        print(f"Using {threads} threads; {args.runs} runs per test")

        print("Setting up Phoronix Test Suite in batch mode...")
        pts.batch_setup(run_all_combinations=False)

        self.capture_snapshot(
            context, self.snapshot_context(args, context, settings={"Threads": threads, "Runs": args.runs})
        )

        config = ToolConfig(
            preset_options=(f"{THREADS_OPTION}={threads}",),
            force_times_to_run=args.runs,
            results_description=context.result_name,
        )
        tests = [
            TestCase(profile=profile, result_name=f"{context.result_id}_{profile.rsplit('/', 1)[-1]}")
            for profile in self.tests(args)
        ]
        locator = ResultLocator(pts.results_dir)
        driver = CpuDriver(pts, config, locator, f"{WARMUP_PREFIX}{context.result_id}")
        host = host_resource()
        context.resources.append({**host.to_dict(), "threads": threads, "runs": args.runs})
        RunSequencer(driver, locator, context.ledger).run_all([host], tests)

        upload_results(context)
