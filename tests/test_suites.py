from __future__ import annotations

import argparse

import pytest

from pts_benchmark import preconditioning
from pts_benchmark.errors import ToolInvocationError
from pts_benchmark.ledger import RunLedger
from pts_benchmark.models import (
    DeviceClassification,
    DeviceType,
    HostResource,
    Outcome,
    Phase,
    PreconditionResult,
    StorageResource,
    TestCase,
)
from pts_benchmark.pts import ToolConfig
from pts_benchmark.results import ResultLocator
from pts_benchmark.sequencer import RunSequencer
from pts_benchmark.suites import base, network, storage
from pts_benchmark.suites.base import HostDriver, RunContext, upload_results
from pts_benchmark.suites.cpu import CpuDriver, CpuSuite
from pts_benchmark.suites.memory import MemorySuite
from pts_benchmark.suites.network import NetworkDriver, peer_cases, standalone_cases
from pts_benchmark.suites.storage import StorageDriver, compare_results


HOST = HostResource("bench-host")


def calls_of(fake_pts, action):
    return [call for call in fake_pts.calls if call[0] == action]


def make_context(fake_pts, privilege, tmp_path, **kwargs):
    return RunContext(
        pts=fake_pts,
        privilege=privilege,
        ledger=RunLedger(),
        result_id="run1",
        result_name="Run on bench-host",
        output_dir=tmp_path,
        **kwargs,
    )


def test_peer_cases():
    cases = peer_cases("10.0.0.2", 25)
    assert [case.name for case in cases] == [
        "iperf_tcp_1stream",
        "iperf_tcp_25streams",
        "iperf_udp_25streams",
        "netperf_tcp_stream",
        "netperf_tcp_maerts",
        "netperf_tcp_rr",
        "netperf_udp_rr",
    ]
    udp = cases[2]
    assert "pts/iperf.test=UDP-1G" in udp.preset_options
    assert "pts/iperf.parallel=25" in udp.preset_options
    assert "pts/iperf.server-address=10.0.0.2" in udp.preset_options
    assert all("duration=360" in case.preset_options[-1] for case in cases)


def test_standalone_cases_share_one_sockperf_profile():
    cases = standalone_cases()
    assert [case.profile for case in cases].count("pts/sockperf") == 3
    assert len({case.name for case in cases}) == len(cases)


def test_network_driver_checks_each_daemon_once(monkeypatch, fake_pts):
    probes = []

    def probe(host, port, timeout=5.0):
        probes.append((host, port))
        return port == 5201

    monkeypatch.setattr(network, "probe_tcp_port", probe)
    driver = NetworkDriver(fake_pts, ToolConfig(), "10.0.0.2")
    cases = standalone_cases() + peer_cases("10.0.0.2", 10)

    reasons = [driver.check_ready(HOST, case) for case in cases]

    assert reasons[:7] == [None] * 7
    assert all("netserver" in reason for reason in reasons[7:])
    assert probes == [("10.0.0.2", 5201), ("10.0.0.2", 12865)]


def test_unreachable_daemon_fails_only_its_cases(monkeypatch, fake_pts):
    monkeypatch.setattr(network, "probe_tcp_port", lambda host, port, timeout=5.0: False)
    driver = NetworkDriver(fake_pts, ToolConfig(), "10.0.0.2")
    cases = standalone_cases() + peer_cases("10.0.0.2", 10)

    ledger = RunSequencer(driver, ResultLocator(fake_pts.results_dir)).run_all([HOST], cases)

    executed = [call[1] for call in calls_of(fake_pts, "batch-run")]
    assert executed == ["pts/network-loopback", "pts/sockperf", "pts/sockperf", "pts/sockperf"]
    assert len(ledger.failures) == 7
    assert {entry.step.phase for entry in ledger.failures} == {Phase.EXECUTE}


def test_host_driver_run_config():
    driver = HostDriver(None, ToolConfig(force_times_to_run=3, preset_options=("a=1",)))
    config = driver.run_config(TestCase("pts/c-ray", "", ("b=2",), "run1_c-ray"))
    assert config.preset_options == ("a=1", "b=2")
    assert config.force_times_to_run == 3
    assert config.results_name == "run1_c-ray"
    assert driver.config.results_name is None


def test_cpu_warm_up_result_is_discarded(fake_pts):
    config = ToolConfig(force_times_to_run=3)
    locator = ResultLocator(fake_pts.results_dir)
    driver = CpuDriver(fake_pts, config, locator, "warmup-run1")

    ledger = RunSequencer(driver, locator).run_all([HOST], [TestCase("pts/c-ray", result_name="run1_c-ray")])

    warmup, timed = calls_of(fake_pts, "batch-run")
    assert warmup[2].force_times_to_run == 1
    assert warmup[2].results_name == "warmup-run1"
    assert timed[2].force_times_to_run == 3
    assert ("remove-result", "warmup-run1", None) in fake_pts.calls
    assert sorted(path.name for path in fake_pts.results_dir.iterdir()) == ["run1_c-ray"]
    assert ledger.completed_results == ["run1_c-ray"]


def test_cpu_warm_up_failure_does_not_fail_the_test(fake_pts):
    locator = ResultLocator(fake_pts.results_dir)
    driver = CpuDriver(fake_pts, ToolConfig(force_times_to_run=3), locator, "warmup-run1")
    original = fake_pts.batch_run

    def flaky_batch_run(profile, config=None):
        if config.results_name == "warmup-run1":
            raise ToolInvocationError(["phoronix-test-suite", "batch-run", profile], 1)
        original(profile, config)

    fake_pts.batch_run = flaky_batch_run

    ledger = RunSequencer(driver, locator).run_all([HOST], [TestCase("pts/c-ray", result_name="run1_c-ray")])

    assert ledger.exit_status() == 0


@pytest.fixture
def storage_driver(monkeypatch, fake_pts, root_privilege, tmp_path):
    lifecycle = []
    monkeypatch.setattr(
        storage, "prepare_disk", lambda resource, privilege, mount_root: lifecycle.append(("prepare", resource.label))
    )
    monkeypatch.setattr(
        storage, "release_disk", lambda resource, privilege, mount_root: lifecycle.append(("release", resource.label))
    )
    monkeypatch.setattr(
        storage,
        "precondition",
        lambda device, device_type, privilege, timeout: PreconditionResult(
            ran=device_type is DeviceType.NVME, passes=2
        ),
    )
    classifications = {
        "hdd1": DeviceClassification("/dev/sdb", DeviceType.HDD, ("sd", "ahci"), "ahci", True),
        "nvme1": DeviceClassification("/dev/nvme0n1", DeviceType.NVME, ("nvme",), "nvme", False),
    }
    driver = StorageDriver(fake_pts, root_privilege, classifications, mount_root=tmp_path / "mnt")
    driver.lifecycle = lifecycle
    return driver


DISKS = [StorageResource("/dev/sdb", "hdd1"), StorageResource("/dev/nvme0n1", "nvme1")]


def test_storage_run_names_results_per_disk(storage_driver, fake_pts, tmp_path):
    tests = [TestCase("fio"), TestCase("iozone")]

    ledger = RunSequencer(storage_driver, ResultLocator(fake_pts.results_dir)).run_all(DISKS, tests)

    assert ledger.completed_results == [
        "hdd1_fio_result",
        "hdd1_iozone_result",
        "nvme1_fio_result",
        "nvme1_iozone_result",
    ]
    assert (fake_pts.results_dir / "nvme1_iozone_result").is_dir()
    assert storage_driver.lifecycle == [
        ("prepare", "hdd1"),
        ("prepare", "nvme1"),
        ("release", "hdd1"),
        ("release", "nvme1"),
    ]
    preconditioned = [entry.step.resource for entry in ledger.entries if entry.step.phase is Phase.PRECONDITION]
    assert preconditioned == ["nvme1"]


def test_storage_installs_and_runs_on_the_disk(storage_driver, fake_pts, tmp_path):
    locator = ResultLocator(fake_pts.results_dir)
    RunSequencer(storage_driver, locator).run_all(DISKS[:1], [TestCase("fio"), TestCase("iozone")])

    mount_point = tmp_path / "mnt" / "hdd1"
    install = calls_of(fake_pts, "install")[0]
    assert install[2].install_root == mount_point
    fio_run, iozone_run = calls_of(fake_pts, "batch-run")
    assert fio_run[2].preset_options == (f"pts/fio.auto-disk-mount-points={mount_point}",)
    assert iozone_run[2].preset_options == ()
    assert "PRESET_OPTIONS" not in iozone_run[2].environment()


def test_compare_results_groups_by_test(fake_pts):
    results = ["hdd1_fio_result", "nvme1_fio_result", "hdd1_iozone_result"]
    compare_results(fake_pts, [TestCase("fio"), TestCase("iozone"), TestCase("postmark")], results)
    assert calls_of(fake_pts, "compare-results") == [
        ("compare-results", "hdd1_fio_result,nvme1_fio_result", None),
        ("compare-results", "hdd1_iozone_result", None),
    ]


def test_upload_results_records_each_upload(fake_pts, root_privilege, tmp_path):
    context = make_context(fake_pts, root_privilege, tmp_path, upload=True)
    context.ledger.success("host", "c-ray", Phase.EXECUTE, "run1_c-ray")
    context.ledger.failure("host", "openssl", Phase.EXECUTE, "exit code 1")
    context.ledger.success("host", "stockfish", Phase.EXECUTE, "run1_stockfish")
    fake_pts.failing.add(("upload-result", "run1_stockfish"))

    upload_results(context)

    upload = calls_of(fake_pts, "upload-result")[0]
    assert upload[2].upload_identifier == "run1"
    assert upload[2].upload_name == "Run on bench-host"
    uploads = [(entry.step.test, entry.outcome) for entry in context.ledger.entries if entry.step.phase is Phase.UPLOAD]
    assert uploads == [("c-ray", Outcome.SUCCESS), ("stockfish", Outcome.FAILED)]
    assert context.ledger.exit_status() == 1


def test_upload_disabled_does_nothing(fake_pts, root_privilege, tmp_path):
    context = make_context(fake_pts, root_privilege, tmp_path)
    context.ledger.success("host", "c-ray", Phase.EXECUTE, "run1_c-ray")
    upload_results(context)
    assert calls_of(fake_pts, "upload-result") == []


def test_memory_suite_run(monkeypatch, fake_pts, root_privilege, tmp_path):
    snapshots = []
    monkeypatch.setattr(
        base, "capture_snapshot", lambda path, snapshot, sys_root, proc_root: snapshots.append(snapshot) or path
    )
    context = make_context(fake_pts, root_privilege, tmp_path)
    suite = MemorySuite()
    args = argparse.Namespace(tests=["pts/stream", "pts/ramspeed"])

    suite.run(args, context)

    assert calls_of(fake_pts, "batch-setup") == [("batch-setup", "True", None)]
    assert snapshots[0].include_thp and snapshots[0].dmidecode_type == "17"
    assert context.snapshot_path == tmp_path / "run1-system-snapshot.txt"
    assert context.ledger.completed_results == ["run1_stream", "run1_ramspeed"]
    assert context.ledger.exit_status() == 0


def test_ssd_disks_are_preconditioned_before_any_prepare(monkeypatch, fake_pts, root_privilege, tmp_path):
    events = []

    def run_fio(command, **kwargs):
        device = next(arg for arg in command if arg.startswith("--filename=")).split("=", 1)[1]
        events.append((command[0], device))
        return "", 0.0, 0

    monkeypatch.setattr(preconditioning, "command_exists", lambda command: True)
    monkeypatch.setattr(preconditioning, "run_command", run_fio)
    monkeypatch.setattr(
        storage, "prepare_disk", lambda resource, privilege, mount_root: events.append(("prepare", resource.label))
    )
    monkeypatch.setattr(
        storage, "release_disk", lambda resource, privilege, mount_root: events.append(("release", resource.label))
    )
    disks = [StorageResource("/dev/sdb", "ssd1"), StorageResource("/dev/sdc", "ssd2")]
    classifications = {
        "ssd1": DeviceClassification("/dev/sdb", DeviceType.SSD, ("sd", "ahci"), "ahci", False),
        "ssd2": DeviceClassification("/dev/sdc", DeviceType.SSD, ("sd", "ahci"), "ahci", False),
    }
    driver = StorageDriver(fake_pts, root_privilege, classifications, mount_root=tmp_path / "mnt")

    ledger = RunSequencer(driver, ResultLocator(fake_pts.results_dir)).run_all(disks, [TestCase("fio")])

    assert events == [
        ("fio", "/dev/sdb"),
        ("fio", "/dev/sdb"),
        ("fio", "/dev/sdc"),
        ("fio", "/dev/sdc"),
        ("prepare", "ssd1"),
        ("prepare", "ssd2"),
        ("release", "ssd1"),
        ("release", "ssd2"),
    ]
    preconditioned = [entry.step.resource for entry in ledger.entries if entry.step.phase is Phase.PRECONDITION]
    assert preconditioned == ["ssd1", "ssd2"]
    assert ledger.completed_results == ["ssd1_fio_result", "ssd2_fio_result"]


def test_suite_tests_drop_repeated_short_names():
    suite = CpuSuite()
    assert suite.tests(argparse.Namespace(tests=["pts/c-ray", "c-ray", "pts/openssl"])) == ["pts/c-ray", "pts/openssl"]
    assert suite.tests(argparse.Namespace(tests=None)) == list(suite.default_tests)
