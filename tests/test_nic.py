from __future__ import annotations

import pytest

from pts_benchmark import nic
from pts_benchmark.models import BufferStatus, NetworkPath


def test_required_buffer_bytes_is_exact():
    assert nic.required_buffer_bytes(10000, 2) == 3_000_000
    assert nic.required_buffer_bytes(10000, 0.1) == 150_000
    assert nic.required_buffer_bytes(1000, 0.3) == 45_000


@pytest.mark.parametrize(
    ("speed", "expected"),
    [(None, 10), (0, 10), (-1, 10), (1000, 10), (10000, 10), (25000, 25), (100000, 100), (400000, 400)],
)
def test_stream_count(speed, expected):
    assert nic.stream_count(speed) == expected


def test_stream_count_is_monotonic():
    counts = [nic.stream_count(speed) for speed in range(0, 200_001, 500)]
    assert counts == sorted(counts)
    assert min(counts) == nic.STREAM_FLOOR


def test_detect_nic_speed(sysfs):
    sysfs.write("class/net/eth0/speed", "25000")
    sysfs.write("class/net/eth1/speed", "-1")
    assert nic.detect_nic_speed("eth0", sysfs.root) == 25000
    assert nic.detect_nic_speed("eth1", sysfs.root) is None
    assert nic.detect_nic_speed("eth9", sysfs.root) is None


def test_buffer_check_skipped_without_speed_or_rtt():
    assert nic.buffer_requirement(None, 1.0, (1, 1)).status is BufferStatus.SKIPPED
    assert nic.buffer_requirement(10000, None, (1, 1)).status is BufferStatus.SKIPPED


def test_buffer_check_adequate():
    check = nic.buffer_requirement(10000, 2, (4_000_000, 4_000_000))
    assert check.status is BufferStatus.ADEQUATE
    assert check.required_bytes == 3_000_000


def test_buffer_check_insufficient_gives_fix():
    check = nic.buffer_requirement(10000, 2, (212992, 3_000_000), "10.0.0.2")
    assert check.status is BufferStatus.INSUFFICIENT
    assert any("net.core.rmem_max=3000000" in command for command in check.local_commands)
    assert any("net.ipv4.tcp_wmem" in command for command in check.local_commands)
    assert "10.0.0.2" in check.remote_instruction
    assert check.rx_ceiling_gbps == pytest.approx(212992 * 8 / 2 / 1e6)


def test_read_socket_buffer_limits(tmp_path):
    core = tmp_path / "proc" / "sys" / "net" / "core"
    core.mkdir(parents=True)
    (core / "rmem_max").write_text("212992\n")
    (core / "wmem_max").write_text("4194304\n")
    assert nic.read_socket_buffer_limits(tmp_path / "proc") == (212992, 4194304)


def test_measure_rtt_parses_average(monkeypatch):
    output = "4 packets transmitted, 4 received, 0% packet loss\nrtt min/avg/max/mdev = 0.100/0.250/0.400/0.050 ms\n"
    monkeypatch.setattr(nic, "read_command_output", lambda command, timeout=10.0: output)
    assert nic.measure_rtt("10.0.0.2") == pytest.approx(0.25)


def test_measure_rtt_failure(monkeypatch):
    monkeypatch.setattr(nic, "read_command_output", lambda command, timeout=10.0: None)
    assert nic.measure_rtt("10.0.0.2") is None


def test_detect_egress_interface(monkeypatch):
    output = "10.0.0.2 dev ens5 src 10.0.0.1 uid 1000\n    cache\n"
    monkeypatch.setattr(nic, "read_command_output", lambda command, timeout=10.0: output)
    assert nic.detect_egress_interface("10.0.0.2") == "ens5"


def test_resolve_bind_address(monkeypatch):
    output = "2: ens5: <BROADCAST,UP>\n    inet 192.168.1.10/24 brd 192.168.1.255 scope global ens5\n"
    monkeypatch.setattr(nic, "read_command_output", lambda command, timeout=10.0: output)
    assert nic.resolve_bind_address("10.1.2.3") == "10.1.2.3"
    assert nic.resolve_bind_address("ens5") == "192.168.1.10"


def test_characterize_link_with_speed_override(monkeypatch, tmp_path):
    monkeypatch.setattr(nic, "measure_rtt", lambda host: 2.0)
    monkeypatch.setattr(nic, "read_socket_buffer_limits", lambda proc_root: (212992, 212992))
    path = NetworkPath(peer_address="10.0.0.2", interface="ens5", nic_speed_override=25000)

    link = nic.characterize_link(path, sys_root=tmp_path)

    assert link.speed_mbps == 25000
    assert link.stream_count == 25
    assert link.required_buffer_bytes == 7_500_000
    assert link.buffer_check.status is BufferStatus.INSUFFICIENT


def test_characterize_link_unknown_speed(monkeypatch, tmp_path):
    monkeypatch.setattr(nic, "read_socket_buffer_limits", lambda proc_root: (0, 0))
    link = nic.characterize_link(NetworkPath(peer_address="10.0.0.2", interface="ens5"), sys_root=tmp_path)
    assert link.speed_mbps is None
    assert link.stream_count == 10
    assert link.buffer_check.status is BufferStatus.SKIPPED
    assert link.required_buffer_bytes is None


def test_streams_override_wins(monkeypatch, tmp_path):
    monkeypatch.setattr(nic, "read_socket_buffer_limits", lambda proc_root: (0, 0))
    link = nic.characterize_link(NetworkPath(interface="lo"), streams_override=4, sys_root=tmp_path)
    assert link.stream_count == 4
