"""Invocation interface for the Phoronix Test Suite command line."""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path

from .errors import ToolInvocationError
from .utils import find_binary, run_command


log = logging.getLogger(__name__)

PTS_EXECUTABLE = "phoronix-test-suite"
PTS_HOME = Path.home() / ".phoronix-test-suite"

# Answers to batch-setup: save results, open browser (no), auto upload (no),
# prompt for identifier (no), run all test option combinations.
BATCH_SETUP_ANSWERS = ("Y", "Y", "N", "N")


@dataclass(frozen=True)
class ToolConfig:
    """Provider variables for a single tool invocation.

    They only reach the child process environment; the orchestrator's own
    environment never carries them between invocations.
    """

    install_root: Path | None = None
    preset_options: tuple[str, ...] = ()
    force_times_to_run: int | None = None
    results_name: str | None = None
    results_description: str | None = None
    upload_name: str | None = None
    upload_identifier: str | None = None

    def environment(self) -> dict[str, str]:
        env: dict[str, str] = {}
        if self.install_root is not None:
            env["PTS_TEST_INSTALL_ROOT_PATH"] = str(self.install_root)
        if self.preset_options:
            env["PRESET_OPTIONS"] = ";".join(self.preset_options)
        if self.force_times_to_run is not None:
            env["FORCE_TIMES_TO_RUN"] = str(self.force_times_to_run)
        if self.results_name:
            env["TEST_RESULTS_NAME"] = self.results_name
        if self.results_description:
            env["TEST_RESULTS_DESCRIPTION"] = self.results_description
        if self.upload_name:
            env["PTS_UPLOAD_NAME"] = self.upload_name
        if self.upload_identifier:
            env["PTS_UPLOAD_IDENTIFIER"] = self.upload_identifier
        return env

    def with_options(self, *options: str) -> ToolConfig:
        return replace(self, preset_options=(*self.preset_options, *options))


class PhoronixTestSuite:
    """Thin wrapper over ``phoronix-test-suite`` sub-commands."""

    def __init__(
        self,
        executable: str = PTS_EXECUTABLE,
        home: Path = PTS_HOME,
        timeout: float | None = None,
    ) -> None:
        self.executable = executable
        self.home = home
        self.timeout = timeout

    @property
    def results_dir(self) -> Path:
        return self.home / "test-results"

    @property
    def installed_tests_dir(self) -> Path:
        return self.home / "installed-tests"

    def _invoke(
        self,
        args: Sequence[str],
        config: ToolConfig | None = None,
        *,
        input_text: str | None = None,
        timeout: float | None = None,
    ) -> None:
        command = [self.executable, *args]
        env = config.environment() if config else {}
        log.debug("Running %s with %s", " ".join(command), env)
        try:
            _, duration, returncode = run_command(
                command,
                env=env,
                capture=False,
                input_text=input_text,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ToolInvocationError(command, None, f"timed out after {exc.timeout:g}s") from exc
        except FileNotFoundError as exc:
            raise ToolInvocationError(command, None, f"{self.executable} not found") from exc
        if returncode != 0:
            raise ToolInvocationError(command, returncode)
        log.debug("%s finished in %.1fs", " ".join(command), duration)

    def batch_setup(self, run_all_combinations: bool = False) -> None:
        answers = (*BATCH_SETUP_ANSWERS, "Y" if run_all_combinations else "N")
        self._invoke(["batch-setup"], input_text="\n".join(answers) + "\n")

    def install(self, profile: str, config: ToolConfig | None = None) -> None:
        self._invoke(["install", profile], config)

    def batch_run(self, profile: str, config: ToolConfig | None = None) -> None:
        self._invoke(["batch-run", profile], config)

    def upload_result(self, result_name: str, config: ToolConfig | None = None) -> None:
        self._invoke(["upload-result", result_name], config)

    def compare_results(self, result_names: Sequence[str]) -> None:
        self._invoke(["compare-results", *result_names])

    def remove_result(self, result_name: str) -> None:
        """Delete a saved result directory (e.g. a discarded warm-up run)."""
        target = self.results_dir / result_name
        if target.is_dir():
            shutil.rmtree(target, ignore_errors=True)

    def find_installed_binary(self, name: str) -> str | None:
        return find_binary(name, self.installed_tests_dir / "pts")
