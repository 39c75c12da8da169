"""Serial orchestration of install/run steps across resources."""

from __future__ import annotations

import logging
from abc import ABC
from collections.abc import Sequence
from typing import Generic, Protocol, TypeVar

from .ledger import RunLedger
from .models import LocatedArtifact, Phase, PreconditionResult, RunStep, TestCase
from .results import ResultLocator


log = logging.getLogger(__name__)


class Resource(Protocol):
    @property
    def label(self) -> str: ...


R = TypeVar("R", bound=Resource)


def describe_error(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


def unique_profiles(tests: Sequence[TestCase]) -> list[str]:
    """Distinct test profiles in declared order."""
    return list(dict.fromkeys(test.profile for test in tests))


def unique_cases(tests: Sequence[TestCase]) -> list[TestCase]:
    """Drop test cases whose name repeats an earlier one; each name is one ledger step."""
    cases: dict[str, TestCase] = {}
    for test in tests:
        if test.name in cases:
            log.warning("Ignoring duplicate test %s (%s)", test.name, test.profile)
            continue
        cases[test.name] = test
    return list(cases.values())


class ResourceDriver(ABC, Generic[R]):
    """Per-resource lifecycle hooks driven by the sequencer."""

    def precondition(self, resource: R) -> PreconditionResult | None:
        """Bring the resource to steady state before any resource is prepared."""
        return None

    def prepare(self, resource: R) -> None:
        """Make the resource usable; raising abandons the resource."""

    def install(self, resource: R, profile: str) -> None:
        raise NotImplementedError(f"{self.__class__.__name__} must implement install()")

    def check_ready(self, resource: R, test: TestCase) -> str | None:
        """Return a reason when the test cannot run right now."""
        return None

    def execute(self, resource: R, test: TestCase) -> None:
        raise NotImplementedError(f"{self.__class__.__name__} must implement execute()")

    def collect(self, resource: R, test: TestCase, artifact: LocatedArtifact) -> str | None:
        """Turn the located artifact into a saved result name."""
        return artifact.path.name if artifact.path else None

    def release(self, resource: R) -> None:
        """Return the resource to a clean state; called exactly once per resource."""


class RunSequencer(Generic[R]):
    """Runs every resource start to finish, one at a time, never interleaved.

    Concurrent runs would contend on shared buses, NICs and caches and
    contaminate each other's measurements.
    """

    def __init__(self, driver: ResourceDriver[R], locator: ResultLocator, ledger: RunLedger | None = None) -> None:
        self.driver = driver
        self.locator = locator
        self.ledger = ledger if ledger is not None else RunLedger()

    def run_all(self, resources: Sequence[R], tests: Sequence[TestCase]) -> RunLedger:
        tests = unique_cases(tests)
        try:
            abandoned = {resource.label for resource in resources if not self._precondition(resource)}
            for resource in resources:
                if resource.label in abandoned:
                    log.warning("Skipping %s: preconditioning failed", resource.label)
                    continue
                self._run_resource(resource, tests)
        finally:
            self._release_all(resources)
        return self.ledger

    def _precondition(self, resource: R) -> bool:
        try:
            result = self.driver.precondition(resource)
        except Exception as exc:
            log.error("Preconditioning %s failed: %s", resource.label, describe_error(exc))
            self.ledger.failure(resource.label, None, Phase.PRECONDITION, describe_error(exc))
            return False
        if result is not None and result.ran:
            self.ledger.success(resource.label, None, Phase.PRECONDITION)
        return True

    def _run_resource(self, resource: R, tests: Sequence[TestCase]) -> None:
        label = resource.label
        print(f"--- {label} ---")
        try:
            self.driver.prepare(resource)
        except Exception as exc:
            log.error("Could not prepare %s; abandoning its tests: %s", label, describe_error(exc))
            self.ledger.failure(label, None, Phase.PREPARE, describe_error(exc))
            return

        installed: set[str] = set()
        for profile in unique_profiles(tests):
            print(f"Installing {profile} on {label}")
            try:
                self.driver.install(resource, profile)
            except Exception as exc:
                log.warning("Failed to install %s on %s; skipping: %s", profile, label, describe_error(exc))
                self.ledger.failure(label, profile, Phase.INSTALL, describe_error(exc))
                continue
            self.ledger.success(label, profile, Phase.INSTALL)
            installed.add(profile)

        for test in tests:
            if test.profile in installed:
                self._execute(resource, test)

    def _execute(self, resource: R, test: TestCase) -> None:
        step = RunStep(resource.label, test.name, Phase.EXECUTE)
        try:
            not_ready = self.driver.check_ready(resource, test)
        except Exception as exc:
            not_ready = f"readiness check failed: {describe_error(exc)}"
        if not_ready:
            log.warning("Skipping %s on %s: %s", test.name, resource.label, not_ready)
            self.ledger.record_failure(step, not_ready)
            return

        print(f"Running {test.name} on {resource.label}")
        before = self.locator.snapshot()
        try:
            self.driver.execute(resource, test)
        except Exception as exc:
            log.warning("%s failed on %s: %s", test.name, resource.label, describe_error(exc))
            self.ledger.record_failure(step, describe_error(exc))
            return
        artifact = self.locator.locate(before, self.locator.snapshot())

        try:
            result_name = self.driver.collect(resource, test, artifact)
        except Exception as exc:
            log.warning("Could not collect the result of %s on %s: %s", test.name, resource.label, describe_error(exc))
            result_name = artifact.path.name if artifact.path else None
        if result_name:
            print(f"Result for {test.name} on {resource.label} saved as: {result_name}")
        self.ledger.record_success(step, result_name)

    def _release_all(self, resources: Sequence[R]) -> None:
        for resource in resources:
            try:
                self.driver.release(resource)
            except Exception as exc:
                log.warning("Cleanup of %s failed: %s", resource.label, describe_error(exc))
