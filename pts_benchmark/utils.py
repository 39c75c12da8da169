"""Utility functions for running tools and reading kernel interfaces."""

from __future__ import annotations

import os
import shutil
import socket
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path


def command_exists(command: str) -> bool:
    """Check if a command exists in PATH."""
    return shutil.which(command) is not None


def run_command(
    command: Sequence[str],
    *,
    env: dict[str, str] | None = None,
    capture: bool = True,
    input_text: str | None = None,
    timeout: float | None = None,
) -> tuple[str, float, int]:
    """Run a command and return its output, duration, and return code.

    With ``capture=False`` the tool writes straight to the terminal (long
    benchmark runs) and the returned output is empty. ``subprocess.TimeoutExpired``
    propagates to the caller after the child has been killed.
    """
    start = time.perf_counter()

    # Force English locale to ensure parseable output
    run_env = os.environ.copy()
    run_env["LC_ALL"] = "C"
    run_env["LANGUAGE"] = "C"

    # Merge any additional environment variables
    if env:
        run_env.update(env)

    completed = subprocess.run(
        list(command),
        check=False,
        stdout=subprocess.PIPE if capture else None,
        stderr=subprocess.STDOUT if capture else None,
        input=input_text,
        text=True,
        env=run_env,
        timeout=timeout,
    )
    duration = time.perf_counter() - start
    return completed.stdout or "", duration, completed.returncode


def read_command_output(command: Sequence[str], timeout: float = 10.0) -> str | None:
    """Run an informational command; return its output or None if it could not run."""
    try:
        stdout, _, returncode = run_command(command, timeout=timeout)
    except (FileNotFoundError, PermissionError, subprocess.SubprocessError, OSError):
        return None
    if returncode != 0:
        return None
    return stdout


def read_sysfs_value(path: Path) -> str | None:
    """Read a stripped value from sysfs/procfs, None when unavailable."""
    try:
        return path.read_text(encoding="utf-8", errors="replace").strip()
    except (OSError, ValueError):
        return None


def read_sysfs_int(path: Path) -> int | None:
    value = read_sysfs_value(path)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def probe_tcp_port(host: str, port: int, timeout: float = 5.0) -> bool:
    """Attempt a single bounded TCP connect to host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except (OSError, ValueError):
        return False


def wait_for_port(host: str, port: int, timeout: float = 5.0) -> bool:
    """Wait for a TCP port to become available."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(0.5)
            try:
                sock.connect((host, port))
                return True
            except OSError:
                time.sleep(0.05)
    return False


def find_binary(name: str, search_root: Path | None = None) -> str | None:
    """Locate a binary in PATH, then under a tool's installation tree."""
    found = shutil.which(name)
    if found:
        return found
    if search_root is None or not search_root.is_dir():
        return None
    for candidate in sorted(search_root.rglob(name)):
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None
