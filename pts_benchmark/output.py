"""Output generation: run summary and JSON report."""

from __future__ import annotations

import json
import re
from pathlib import Path

from .ledger import RunLedger
from .models import RunReport


def sanitize_for_filename(value: str) -> str:
    """Sanitize a string to be safe for use in filenames."""
    return re.sub(r"[^A-Za-z0-9._-]+", "-", value).strip("-")


def write_json_report(report: RunReport, output_path: Path) -> None:
    """Write run report to JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(report.to_dict(), indent=2))


def format_summary(ledger: RunLedger) -> list[str]:
    """Every completed result and every failure with its resource, test and phase."""
    results = ledger.completed_results
    failures = ledger.failures
    lines = [
        "",
        "=" * 40,
        "    Benchmark Summary",
        "=" * 40,
        f"Completed results: {len(results)}",
    ]
    lines.extend(f"  [OK] {name}" for name in results)

    if failures:
        lines.append("")
        lines.append(f"Failed steps: {len(failures)}")
        for entry in failures:
            step = entry.step
            test = f"/{step.test}" if step.test else ""
            lines.append(f"  [FAIL] {step.resource}{test} ({step.phase.value}): {entry.reason}")
        lines.append("")
        lines.append(f"ERROR: {len(failures)} step(s) failed. See output above for details.")
    elif ledger.interrupted:
        lines.append("")
        lines.append("Run interrupted before all tests completed.")
    else:
        lines.append("")
        lines.append("All tests completed successfully.")
    return lines


def print_summary(ledger: RunLedger) -> None:
    for line in format_summary(ledger):
        print(line)
