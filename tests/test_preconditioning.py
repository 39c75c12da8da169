from __future__ import annotations

import subprocess

import pytest

from pts_benchmark import preconditioning
from pts_benchmark.errors import PreconditioningError
from pts_benchmark.models import DeviceType
from pts_benchmark.privileges import Privilege


class FioRunner:
    def __init__(self, returncodes=(0, 0), raises=None):
        self.returncodes = list(returncodes)
        self.raises = raises
        self.commands = []

    def __call__(self, command, **kwargs):
        self.commands.append(list(command))
        if self.raises is not None:
            raise self.raises
        return "", 1.0, self.returncodes[len(self.commands) - 1]


@pytest.fixture
def fio_available(monkeypatch):
    monkeypatch.setattr(preconditioning, "command_exists", lambda command: True)


@pytest.mark.parametrize("device_type", [DeviceType.HDD, DeviceType.UNKNOWN])
def test_skipped_for_rotational_and_unknown(monkeypatch, root_privilege, fio_available, device_type):
    runner = FioRunner()
    monkeypatch.setattr(preconditioning, "run_command", runner)

    result = preconditioning.precondition("/dev/sdb", device_type, root_privilege)

    assert not result.ran
    assert result.reason
    assert runner.commands == []


def test_skipped_without_privilege(monkeypatch, no_privilege, fio_available):
    monkeypatch.setattr(preconditioning, "run_command", FioRunner())
    result = preconditioning.precondition("/dev/nvme0n1", DeviceType.NVME, no_privilege)
    assert not result.ran
    assert "privileges" in result.reason


def test_skipped_without_fio(monkeypatch, root_privilege):
    monkeypatch.setattr(preconditioning, "command_exists", lambda command: False)
    result = preconditioning.precondition("/dev/nvme0n1", DeviceType.NVME, root_privilege)
    assert not result.ran
    assert "fio" in result.reason


@pytest.mark.parametrize("device_type", [DeviceType.NVME, DeviceType.SSD, DeviceType.VIRTUAL])
def test_two_sequential_write_passes(monkeypatch, fio_available, device_type):
    runner = FioRunner()
    monkeypatch.setattr(preconditioning, "run_command", runner)

    result = preconditioning.precondition("/dev/vdb", device_type, Privilege(has_privilege=True))

    assert result.ran and result.passes == 2
    assert len(runner.commands) == 2
    first = runner.commands[0]
    assert first[:2] == ["sudo", "fio"]
    assert "--filename=/dev/vdb" in first
    assert "--rw=write" in first
    assert "--direct=1" in first


def test_failed_pass_raises(monkeypatch, root_privilege, fio_available):
    runner = FioRunner(returncodes=(1, 0))
    monkeypatch.setattr(preconditioning, "run_command", runner)

    with pytest.raises(PreconditioningError, match="pass 1"):
        preconditioning.precondition("/dev/nvme0n1", DeviceType.NVME, root_privilege)
    assert len(runner.commands) == 1


def test_timed_out_pass_raises(monkeypatch, root_privilege, fio_available):
    monkeypatch.setattr(preconditioning, "run_command", FioRunner(raises=subprocess.TimeoutExpired(["fio"], 60)))
    with pytest.raises(PreconditioningError, match="timed out"):
        preconditioning.precondition("/dev/nvme0n1", DeviceType.NVME, root_privilege, timeout=60)
