"""Bootstrap of the Phoronix Test Suite through the distribution package manager."""

from __future__ import annotations

import logging
import platform

from .errors import SetupError
from .privileges import Privilege
from .pts import PTS_EXECUTABLE
from .utils import command_exists, run_command


log = logging.getLogger(__name__)

PTS_PACKAGE = "phoronix-test-suite"
# Storage runs also format, wipe and precondition disks.
SUITE_PACKAGES = {
    "storage": ("xfsprogs", "util-linux", "fio"),
}
DEBIAN_FALLBACK_URL = (
    "https://phoronix-test-suite.com/releases/repo/pts.debian/files/phoronix-test-suite_10.8.4_all.deb"
)
OPENSUSE_REPO_ROOT = "https://download.opensuse.org/repositories/benchmark"
OPENSUSE_BUILD_PACKAGES = (
    "gcc",
    "gcc-c++",
    "make",
    "autoconf",
    "bison",
    "flex",
    "libopenssl-devel",
    "libelf-devel",
    "libaio-devel",
)

Plan = list[list[str]]


def _opensuse_repo_url(os_id: str, version_id: str) -> str:
    if os_id == "opensuse-tumbleweed":
        return f"{OPENSUSE_REPO_ROOT}/openSUSE_Tumbleweed"
    if os_id == "opensuse-slowroll":
        return f"{OPENSUSE_REPO_ROOT}/openSUSE_Slowroll"
    if os_id == "opensuse-leap":
        return f"{OPENSUSE_REPO_ROOT}/{version_id}/"
    raise SetupError(f"Unsupported openSUSE variant: {os_id}")


def install_plan(os_release: dict[str, str], extra_packages: tuple[str, ...] = ()) -> tuple[Plan, Plan]:
    """Primary and fallback command lists for the detected distribution."""
    os_id = os_release.get("ID", "")
    packages = [PTS_PACKAGE, *extra_packages]

    if os_id in ("rocky", "rhel", "centos", "fedora"):
        primary = [["dnf", "install", "-y", "epel-release"]] if os_id != "fedora" else []
        primary.append(["dnf", "install", "-y", *packages])
        return primary, []

    if os_id in ("ubuntu", "debian"):
        primary = [["apt-get", "update"], ["apt-get", "install", "-y", *packages]]
        fallback = [
            ["wget", "-O", "/tmp/phoronix.deb", DEBIAN_FALLBACK_URL],
            ["dpkg", "-i", "/tmp/phoronix.deb"],
            ["apt-get", "install", "-f", "-y"],
        ]
        return primary, fallback

    if os_id.startswith("opensuse") or os_id == "suse":
        repo_url = _opensuse_repo_url(os_id, os_release.get("VERSION_ID", ""))
        primary = [
            ["zypper", "ar", "-f", "-p", "90", repo_url, "benchmark"],
            ["zypper", "--gpg-auto-import-keys", "refresh"],
            ["zypper", "install", "-y", *packages, *OPENSUSE_BUILD_PACKAGES],
        ]
        return primary, []

    raise SetupError(f"Unsupported OS: {os_id or 'unknown'}")


def _run_plan(plan: Plan, privilege: Privilege) -> bool:
    for command in plan:
        print(f"Running: {' '.join(command)}")
        _, _, returncode = run_command(privilege.command(command), capture=False)
        if returncode != 0:
            log.warning("%s exited with code %d", " ".join(command), returncode)
            return False
    return True


def ensure_phoronix_test_suite(privilege: Privilege, suite: str) -> None:
    """Install the Phoronix Test Suite when it is missing; raises SetupError."""
    if command_exists(PTS_EXECUTABLE):
        return
    try:
        os_release = platform.freedesktop_os_release()
    except OSError as exc:
        raise SetupError("Cannot detect OS: /etc/os-release not found") from exc

    primary, fallback = install_plan(os_release, SUITE_PACKAGES.get(suite, ()))
    print(f"{PTS_EXECUTABLE} not found; installing it for {os_release.get('PRETTY_NAME', os_release.get('ID'))}")
    if not privilege.has_privilege:
        raise SetupError(f"{PTS_EXECUTABLE} is not installed and root or passwordless sudo is required to install it")

    if not _run_plan(primary, privilege):
        if not fallback:
            raise SetupError(f"Installing {PTS_PACKAGE} failed")
        print("Phoronix Test Suite not found in the repositories, attempting fallback install...")
        if not _run_plan(fallback, privilege):
            raise SetupError(f"Installing {PTS_PACKAGE} failed")

    if not command_exists(PTS_EXECUTABLE):
        raise SetupError(f"{PTS_EXECUTABLE} is still not available after installation")
