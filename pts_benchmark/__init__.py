"""pts-benchmark - Reproducible Phoronix Test Suite runs for storage, CPU, memory and network."""

from .cli import main
from .ledger import RunLedger
from .models import (
    DeviceClassification,
    DeviceType,
    LinkCharacterization,
    RunReport,
    StorageResource,
    SystemInfo,
    TestCase,
)


__version__ = "1.0.0"

__all__ = [
    "DeviceClassification",
    "DeviceType",
    "LinkCharacterization",
    "RunLedger",
    "RunReport",
    "StorageResource",
    "SystemInfo",
    "TestCase",
    "main",
]
