"""Exception hierarchy for benchmark orchestration."""

from __future__ import annotations

from collections.abc import Sequence


class BenchmarkError(Exception):
    """Base class for all orchestration errors."""


class UsageError(BenchmarkError):
    """Invalid or conflicting command-line input."""


class SetupError(BenchmarkError):
    """Unrecoverable host setup problem (e.g. unsupported OS)."""


class ToolInvocationError(BenchmarkError):
    """An external tool exited non-zero or timed out."""

    def __init__(self, command: Sequence[str], returncode: int | None, detail: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.detail = detail
        if returncode is None:
            message = detail or "timed out"
        else:
            message = f"exit code {returncode}"
            if detail:
                message = f"{message}: {detail}"
        super().__init__(f"{self.command[0] if self.command else 'command'} failed ({message})")


class ResourcePreparationError(BenchmarkError):
    """A resource could not be prepared; its remaining steps are abandoned."""


class PreconditioningError(BenchmarkError):
    """A preconditioning write pass failed."""
