"""Detection of the right to change host kernel state."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .utils import command_exists, run_command


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Privilege:
    """Whether this process may mutate system state, and how to elevate commands."""

    has_privilege: bool
    is_root: bool = False

    def command(self, command: Sequence[str]) -> list[str]:
        """Prefix a command with sudo unless already running as root."""
        if self.is_root:
            return list(command)
        return ["sudo", *command]

    def write_file(self, path: Path, value: str) -> None:
        """Write a value to a kernel interface file, elevating through sudo tee if needed.

        Raises OSError when the write fails.
        """
        if self.is_root:
            path.write_text(f"{value}\n", encoding="utf-8")
            return
        _, _, returncode = run_command(self.command(["tee", str(path)]), input_text=f"{value}\n")
        if returncode != 0:
            raise OSError(f"sudo tee {path} exited with {returncode}")


def detect_privileges() -> Privilege:
    """Root, or passwordless sudo, grants privilege."""
    if os.geteuid() == 0:
        return Privilege(has_privilege=True, is_root=True)
    if command_exists("sudo"):
        try:
            _, _, returncode = run_command(["sudo", "-n", "true"], timeout=10)
        except (OSError, subprocess.SubprocessError):
            returncode = 1
        if returncode == 0:
            return Privilege(has_privilege=True)
    log.info("Not running as root and no passwordless sudo available; system settings will not be changed.")
    return Privilege(has_privilege=False)
