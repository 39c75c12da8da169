"""Append-only record of run step outcomes."""

from __future__ import annotations

from .models import LedgerEntry, Outcome, Phase, RunStep


class RunLedger:
    """Ordered step outcomes; each step is resolved exactly once.

    Failures never abort the run; the ledger is read once at the end to derive
    the process exit status.
    """

    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []
        self._seen: set[RunStep] = set()
        self.interrupted = False

    def _append(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.step in self._seen:
            raise ValueError(f"Step already recorded: {entry.step.describe()}")
        self._seen.add(entry.step)
        self._entries.append(entry)
        return entry

    def record_success(self, step: RunStep, result_name: str | None = None) -> LedgerEntry:
        return self._append(LedgerEntry(step, Outcome.SUCCESS, result_name=result_name))

    def record_failure(self, step: RunStep, reason: str) -> LedgerEntry:
        return self._append(LedgerEntry(step, Outcome.FAILED, reason=reason))

    def failure(self, resource: str, test: str | None, phase: Phase, reason: str) -> LedgerEntry:
        return self.record_failure(RunStep(resource, test, phase), reason)

    def success(self, resource: str, test: str | None, phase: Phase, result_name: str | None = None) -> LedgerEntry:
        return self.record_success(RunStep(resource, test, phase), result_name)

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    @property
    def failures(self) -> list[LedgerEntry]:
        return [entry for entry in self._entries if entry.outcome is Outcome.FAILED]

    @property
    def completed_results(self) -> list[str]:
        """Saved result names of successful execute steps, in run order."""
        return [
            entry.result_name
            for entry in self._entries
            if entry.outcome is Outcome.SUCCESS and entry.step.phase is Phase.EXECUTE and entry.result_name
        ]

    def has_failures(self) -> bool:
        return any(entry.outcome is Outcome.FAILED for entry in self._entries)

    def exit_status(self) -> int:
        return 1 if self.has_failures() or self.interrupted else 0
