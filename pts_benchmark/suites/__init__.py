"""Benchmark suites - orchestrators and registry."""

from __future__ import annotations

from .base import HostDriver, RunContext, SuiteBase, upload_results
from .cpu import CpuSuite
from .memory import MemorySuite
from .network import NetworkSuite
from .storage import StorageSuite


# Registry of all suites
ALL_SUITES: list[SuiteBase] = [
    StorageSuite(),
    CpuSuite(),
    MemorySuite(),
    NetworkSuite(),
]

# Create a map from suite name to suite instance for easy lookup
SUITE_MAP: dict[str, SuiteBase] = {suite.name: suite for suite in ALL_SUITES}

__all__ = [
    "ALL_SUITES",
    "SUITE_MAP",
    "CpuSuite",
    "HostDriver",
    "MemorySuite",
    "NetworkSuite",
    "RunContext",
    "StorageSuite",
    "SuiteBase",
    "upload_results",
]
