from __future__ import annotations

from pathlib import Path

import pytest

from pts_benchmark.privileges import Privilege


class FakeSysfs:
    """Builds a minimal /sys tree with driver symlinks under a temporary root."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def device(self, *parts: str) -> Path:
        node = self.root.joinpath("devices", *parts)
        node.mkdir(parents=True, exist_ok=True)
        return node

    def bind(self, node: Path, driver: str) -> Path:
        target = self.root / "bus" / "drivers" / driver
        target.mkdir(parents=True, exist_ok=True)
        node.mkdir(parents=True, exist_ok=True)
        (node / "driver").symlink_to(target)
        return node

    def block(
        self,
        name: str,
        device_node: Path | None = None,
        *,
        rotational: str | None = "0",
        scheduler: str | None = None,
    ) -> Path:
        block = self.root / "block" / name
        (block / "queue").mkdir(parents=True, exist_ok=True)
        if rotational is not None:
            (block / "queue" / "rotational").write_text(f"{rotational}\n")
        if scheduler is not None:
            (block / "queue" / "scheduler").write_text(f"{scheduler}\n")
        if device_node is not None:
            (block / "device").symlink_to(device_node)
        return block

    def partition(self, disk: str, name: str) -> None:
        part_dir = self.root / "block" / disk / name
        part_dir.mkdir(parents=True, exist_ok=True)
        (part_dir / "partition").write_text("1\n")
        class_dir = self.root / "class" / "block"
        class_dir.mkdir(parents=True, exist_ok=True)
        (class_dir / name).symlink_to(part_dir)

    def write(self, relative: str, value: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{value}\n")
        return path


class FakePts:
    """Records Phoronix Test Suite invocations instead of running them."""

    def __init__(self, home: Path, timeout: float | None = None) -> None:
        self.home = home
        self.timeout = timeout
        self.calls: list[tuple[str, object, object]] = []
        self.failing: set[tuple[str, str]] = set()
        self.results_dir.mkdir(parents=True, exist_ok=True)

    @property
    def results_dir(self) -> Path:
        return self.home / "test-results"

    def _call(self, action: str, target: str, config: object = None) -> None:
        from pts_benchmark.errors import ToolInvocationError

        self.calls.append((action, target, config))
        if (action, target) in self.failing:
            raise ToolInvocationError(["phoronix-test-suite", action, target], 1)

    def batch_setup(self, run_all_combinations: bool = False) -> None:
        self._call("batch-setup", str(run_all_combinations))

    def install(self, profile: str, config: object = None) -> None:
        self._call("install", profile, config)

    def batch_run(self, profile: str, config: object = None) -> None:
        self._call("batch-run", profile, config)
        name = getattr(config, "results_name", None) or f"{profile.replace('/', '-')}-{len(self.calls)}"
        (self.results_dir / name).mkdir(exist_ok=True)

    def upload_result(self, result_name: str, config: object = None) -> None:
        self._call("upload-result", result_name, config)

    def compare_results(self, result_names: list[str]) -> None:
        self._call("compare-results", ",".join(result_names))

    def remove_result(self, result_name: str) -> None:
        self.calls.append(("remove-result", result_name, None))
        target = self.results_dir / result_name
        if target.is_dir():
            target.rmdir()


@pytest.fixture
def sysfs(tmp_path: Path) -> FakeSysfs:
    return FakeSysfs(tmp_path / "sys")


@pytest.fixture
def fake_pts(tmp_path: Path) -> FakePts:
    return FakePts(tmp_path / "pts-home")


@pytest.fixture
def root_privilege() -> Privilege:
    return Privilege(has_privilege=True, is_root=True)


@pytest.fixture
def no_privilege() -> Privilege:
    return Privilege(has_privilege=False)
