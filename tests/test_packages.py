from __future__ import annotations

import pytest

from pts_benchmark import packages
from pts_benchmark.errors import SetupError


def test_rocky_enables_epel_first():
    primary, fallback = packages.install_plan({"ID": "rocky"})
    assert primary == [
        ["dnf", "install", "-y", "epel-release"],
        ["dnf", "install", "-y", "phoronix-test-suite"],
    ]
    assert fallback == []


def test_fedora_needs_no_epel():
    primary, _ = packages.install_plan({"ID": "fedora"}, ("fio",))
    assert primary == [["dnf", "install", "-y", "phoronix-test-suite", "fio"]]


def test_debian_falls_back_to_the_upstream_package():
    primary, fallback = packages.install_plan({"ID": "ubuntu"}, packages.SUITE_PACKAGES["storage"])
    assert primary[0] == ["apt-get", "update"]
    assert primary[1] == ["apt-get", "install", "-y", "phoronix-test-suite", "xfsprogs", "util-linux", "fio"]
    assert [command[0] for command in fallback] == ["wget", "dpkg", "apt-get"]


@pytest.mark.parametrize(
    ("os_release", "repo"),
    [
        ({"ID": "opensuse-tumbleweed"}, "openSUSE_Tumbleweed"),
        ({"ID": "opensuse-slowroll"}, "openSUSE_Slowroll"),
        ({"ID": "opensuse-leap", "VERSION_ID": "15.6"}, "15.6/"),
    ],
)
def test_opensuse_adds_the_benchmark_repository(os_release, repo):
    primary, _ = packages.install_plan(os_release)
    assert primary[0][-2].endswith(repo)
    assert primary[1] == ["zypper", "--gpg-auto-import-keys", "refresh"]
    assert "phoronix-test-suite" in primary[2]


@pytest.mark.parametrize("os_id", ["arch", "nixos", ""])
def test_unsupported_os(os_id):
    with pytest.raises(SetupError, match="Unsupported OS"):
        packages.install_plan({"ID": os_id})


def test_present_tool_is_not_reinstalled(monkeypatch, no_privilege):
    monkeypatch.setattr(packages, "command_exists", lambda command: True)
    monkeypatch.setattr(packages, "run_command", lambda *args, **kwargs: pytest.fail("should not install"))
    packages.ensure_phoronix_test_suite(no_privilege, "cpu")


def test_missing_tool_without_privilege(monkeypatch, no_privilege):
    monkeypatch.setattr(packages, "command_exists", lambda command: False)
    monkeypatch.setattr(packages.platform, "freedesktop_os_release", lambda: {"ID": "fedora"})
    with pytest.raises(SetupError, match="sudo"):
        packages.ensure_phoronix_test_suite(no_privilege, "cpu")


def test_fallback_runs_when_primary_fails(monkeypatch, root_privilege):
    installed = []
    commands = []

    def run(command, **kwargs):
        commands.append(command)
        if command[:2] == ["apt-get", "install"] and "-f" not in command:
            return "", 0.0, 100
        if command[0] == "dpkg":
            installed.append(True)
        return "", 0.0, 0

    monkeypatch.setattr(packages, "command_exists", lambda command: bool(installed))
    monkeypatch.setattr(packages.platform, "freedesktop_os_release", lambda: {"ID": "debian"})
    monkeypatch.setattr(packages, "run_command", run)

    packages.ensure_phoronix_test_suite(root_privilege, "memory")

    assert [command[0] for command in commands] == ["apt-get", "apt-get", "wget", "dpkg", "apt-get"]
