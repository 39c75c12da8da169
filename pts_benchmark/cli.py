"""Command-line interface for pts-benchmark."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

from .errors import BenchmarkError, UsageError
from .ledger import RunLedger
from .models import RunReport
from .output import print_summary, write_json_report
from .packages import ensure_phoronix_test_suite
from .privileges import Privilege, detect_privileges
from .pts import PhoronixTestSuite
from .suites import ALL_SUITES, SUITE_MAP, RunContext, SuiteBase
from .system_checks import check_system_environment, offer_performance_governor, print_system_warnings
from .system_info import gather_system_info


log = logging.getLogger(__name__)


class UsageExitParser(argparse.ArgumentParser):
    """Argument parser whose errors exit with status 1."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


class CommaSeparatedListAction(argparse.Action):
    """Parse comma-separated values and accumulate across repeated flags."""

    def __call__(self, parser, namespace, values, option_string=None) -> None:
        option_string = option_string or self.option_strings[0]
        current = list(getattr(namespace, self.dest, []) or [])
        raw_values = values if isinstance(values, list) else [values]
        tokens = [part.strip() for token in raw_values for part in token.split(",") if part.strip()]
        if not tokens:
            parser.error(f"{option_string} requires at least one value.")
        current.extend(tokens)
        setattr(namespace, self.dest, unique_ordered(current))


def unique_ordered(values: Sequence[str]) -> list[str]:
    """Return unique values in order."""
    return list(dict.fromkeys(values))


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-u",
        "--upload",
        action="store_true",
        help="Upload results to OpenBenchmarking.org (requires --result-name and --result-id)",
    )
    parser.add_argument("-n", "--result-name", default="", help="Saved test name / description of the results")
    parser.add_argument("-i", "--result-id", default="", help="Test identifier, e.g. 'XCloud-cpuN-20250917'")
    parser.add_argument(
        "--step-timeout",
        type=float,
        metavar="SECONDS",
        help="Abort any single tool invocation after this many seconds (default: no limit)",
    )
    parser.add_argument("--json-report", default="", metavar="PATH", help="Also write a JSON run report to PATH")
    parser.add_argument(
        "--skip-install",
        action="store_true",
        help="Do not install the Phoronix Test Suite when it is missing",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")


def build_argument_parser(suites: Sequence[SuiteBase] = ALL_SUITES) -> argparse.ArgumentParser:
    """Build and configure the argument parser."""
    parser = UsageExitParser(
        prog="pts-benchmark",
        description="Run reproducible Phoronix Test Suite benchmarks for storage, CPU, memory or network.",
    )
    subparsers = parser.add_subparsers(dest="suite", metavar="SUITE", required=True)
    for suite in suites:
        sub = subparsers.add_parser(suite.name, help=suite.description, description=suite.description)
        add_common_arguments(sub)
        if suite.accepts_tests:
            sub.add_argument(
                "-T",
                "--tests",
                action=CommaSeparatedListAction,
                default=[],
                metavar="TEST",
                help=f"Comma-separated test profiles (default: {','.join(suite.default_tests)})",
            )
        suite.add_arguments(sub)
    return parser


def validate_common(args: argparse.Namespace) -> None:
    if args.upload and not (args.result_name and args.result_id):
        raise UsageError("--upload requires both --result-name and --result-id")
    if args.step_timeout is not None and args.step_timeout <= 0:
        raise UsageError("--step-timeout must be a positive number of seconds")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )


def _terminate(signum, frame) -> NoReturn:
    raise KeyboardInterrupt


def install_signal_handlers() -> None:
    """Treat SIGTERM like Ctrl-C so the same cleanup scopes run."""
    signal.signal(signal.SIGTERM, _terminate)


def default_result_id(suite: str, now: datetime) -> str:
    return f"{suite}-benchmark-{now.strftime('%Y-%m-%d-%H%M%S')}"


def run_system_checks(suite: SuiteBase, privilege: Privilege) -> None:
    print("--- Pre-run System Checks ---")
    governor_warnings = offer_performance_governor(privilege)
    warnings_list = check_system_environment(include_thp=suite.include_thp, governor_warnings=governor_warnings)
    print("-" * 30)
    print_system_warnings(warnings_list)


def write_report(args: argparse.Namespace, context: RunContext, suite: SuiteBase, generated_at: datetime) -> None:
    report = RunReport(
        generated_at=generated_at,
        suite=suite.name,
        result_id=context.result_id,
        system=gather_system_info(),
        entries=context.ledger.entries,
        snapshot_path=str(context.snapshot_path or ""),
        interrupted=context.ledger.interrupted,
        resources=context.resources,
    )
    output_path = Path(args.json_report)
    write_json_report(report, output_path)
    print(f"Wrote {output_path}")


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the benchmark orchestrator."""
    parser = build_argument_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    suite = SUITE_MAP[args.suite]

    try:
        validate_common(args)
        suite.validate(args)
    except UsageError as exc:
        parser.print_usage(sys.stderr)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    install_signal_handlers()
    generated_at = datetime.now(UTC)
    privilege = detect_privileges()
    ledger = RunLedger()
    context = RunContext(
        pts=PhoronixTestSuite(timeout=args.step_timeout),
        privilege=privilege,
        ledger=ledger,
        result_id=args.result_id or default_result_id(suite.name, datetime.now()),
        result_name=args.result_name or f"Automated {suite.name} benchmark run with pts-benchmark",
        upload=args.upload,
    )
    if args.upload:
        print("Results will be uploaded with the following details:")
        print(f"  Identifier: {context.result_id}")
        print(f"  Name:       {context.result_name}")

    fatal = False
    service_status = None
    try:
        if not args.skip_install:
            ensure_phoronix_test_suite(privilege, suite.name)
        service_status = suite.run_service(args, context)
        if service_status is None:
            if suite.run_system_checks:
                run_system_checks(suite, privilege)
            suite.run(args, context)
    except BenchmarkError as exc:
        log.error("%s", exc)
        fatal = True
    except KeyboardInterrupt:
        ledger.interrupted = True
        print(file=sys.stderr)
        log.warning("Interrupted; resources have been released.")
    except Exception as exc:
        log.exception("Unexpected error: %s", exc)
        fatal = True
    finally:
        if service_status is None:
            print_summary(ledger)
            if args.json_report:
                write_report(args, context, suite, generated_at)
            print(f"\n=== {suite.name.capitalize()} benchmark complete ===")

    if service_status is not None:
        return service_status
    return 1 if fatal else ledger.exit_status()
