"""Network server mode: run the iperf3 and netperf daemons for a remote client."""

from __future__ import annotations

import contextlib
import logging
import subprocess
import time

from .errors import SetupError, ToolInvocationError
from .nic import resolve_bind_address
from .pts import PhoronixTestSuite
from .utils import wait_for_port


log = logging.getLogger(__name__)

IPERF3_PORT = 5201
NETSERVER_PORT = 12865
SERVER_PROFILES = ("pts/iperf", "pts/netperf")
STARTUP_TIMEOUT = 5.0


def daemon_commands(iperf3: str, netserver: str, bind_address: str | None) -> tuple[list[str], list[str]]:
    iperf3_command = [iperf3, "-s"]
    # -D keeps netserver in the foreground so this process owns it.
    netserver_command = [netserver, "-D"]
    if bind_address:
        iperf3_command += ["-B", bind_address]
        netserver_command += ["-L", bind_address]
    return iperf3_command, netserver_command


def stop_daemons(processes: list[subprocess.Popen[bytes]]) -> None:
    for process in processes:
        if process.poll() is None:
            process.terminate()
    for process in processes:
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            with contextlib.suppress(Exception):
                process.wait(timeout=5)


def run_server_mode(pts: PhoronixTestSuite, bind_interface: str | None = None) -> int:
    """Serve iperf3 and netserver until interrupted; both daemons are always stopped."""
    bind_address = None
    if bind_interface:
        bind_address = resolve_bind_address(bind_interface)
        if not bind_address:
            raise SetupError(f"Could not determine an IPv4 address for interface {bind_interface}")

    print("=== Network server mode ===")
    for profile in SERVER_PROFILES:
        print(f"Installing {profile}")
        try:
            pts.install(profile)
        except ToolInvocationError as exc:
            log.warning("Failed to install %s: %s", profile, exc)

    iperf3 = pts.find_installed_binary("iperf3")
    if not iperf3:
        raise SetupError("iperf3 binary not found after installing pts/iperf")
    netserver = pts.find_installed_binary("netserver")
    if not netserver:
        raise SetupError("netserver binary not found after installing pts/netperf")
    print(f"iperf3:    {iperf3}")
    print(f"netserver: {netserver}")

    iperf3_command, netserver_command = daemon_commands(iperf3, netserver, bind_address)
    processes: list[subprocess.Popen[bytes]] = []
    try:
        print(f"--- Starting iperf3 server (port {IPERF3_PORT}) ---")
        processes.append(subprocess.Popen(iperf3_command))
        print(f"--- Starting netserver (port {NETSERVER_PORT}) ---")
        processes.append(subprocess.Popen(netserver_command))

        probe_host = bind_address or "127.0.0.1"
        for port in (IPERF3_PORT, NETSERVER_PORT):
            if not wait_for_port(probe_host, port, timeout=STARTUP_TIMEOUT):
                log.warning("Nothing is listening on %s:%d yet", probe_host, port)

        print()
        print("=== Server daemons running ===")
        print(f"  Bind address : {bind_address or 'all interfaces (0.0.0.0)'}")
        print(f"  iperf3       : port {IPERF3_PORT}   (PID {processes[0].pid})")
        print(f"  netserver    : port {NETSERVER_PORT}  (PID {processes[1].pid})")
        print()
        print("Press Ctrl+C to stop.")

        while all(process.poll() is None for process in processes):
            time.sleep(1)
        for command, process in zip((iperf3_command, netserver_command), processes, strict=True):
            if process.returncode is not None:
                log.error("%s exited unexpectedly with code %d", command[0], process.returncode)
        return 1
    except OSError as exc:
        raise SetupError(f"Could not start server daemons: {exc}") from exc
    except KeyboardInterrupt:
        print()
        print("Stopping server daemons...")
        return 0
    finally:
        stop_daemons(processes)
        print("Done.")
