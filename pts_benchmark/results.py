"""Result artifact discovery by diffing the results directory around a run."""

from __future__ import annotations

import logging
from collections.abc import Set
from pathlib import Path

from .models import LocatedArtifact, LocateStatus


log = logging.getLogger(__name__)


def snapshot_result_dirs(results_dir: Path) -> frozenset[str]:
    """Names of the result directories present right now."""
    try:
        return frozenset(entry.name for entry in results_dir.iterdir() if entry.is_dir())
    except OSError:
        return frozenset()


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return float("-inf")


def locate(before: Set[str], after: Set[str], results_dir: Path) -> LocatedArtifact:
    """Identify the artifact a run produced from before/after directory listings.

    Diffing scopes the search to what changed during this step, which a plain
    newest-mtime lookup over the whole directory cannot do under rapid
    successive runs.
    """
    candidates = sorted(set(after) - set(before))
    if not candidates:
        log.warning("No new result directory detected in %s", results_dir)
        return LocatedArtifact(LocateStatus.NONE)

    if len(candidates) == 1:
        return LocatedArtifact(LocateStatus.FOUND, results_dir / candidates[0], tuple(candidates))

    chosen = max(candidates, key=lambda name: (_mtime(results_dir / name), name))
    log.warning(
        "%d new result directories detected; expected 1. Candidates: %s. Picking the most recently modified: %s",
        len(candidates),
        ", ".join(candidates),
        chosen,
    )
    return LocatedArtifact(LocateStatus.AMBIGUOUS, results_dir / chosen, tuple(candidates))


def relocate(artifact: Path, new_name: str) -> Path:
    """Rename an artifact within its directory; an existing target is never overwritten."""
    if artifact.name == new_name:
        return artifact
    target = artifact.parent / new_name
    if target.exists():
        log.warning("Result %s already exists; keeping %s under its original name", target, artifact.name)
        return artifact
    artifact.rename(target)
    return target


class ResultLocator:
    """Before/after snapshots of one results directory."""

    def __init__(self, results_dir: Path) -> None:
        self.results_dir = results_dir

    def snapshot(self) -> frozenset[str]:
        return snapshot_result_dirs(self.results_dir)

    def locate(self, before: Set[str], after: Set[str]) -> LocatedArtifact:
        return locate(before, after, self.results_dir)
