"""Container telemetry collector - Core package."""

from __future__ import annotations

from container_telemetry.core.schemas import (
    CollectorConfig,
    ContainerStats,
    CycleReport,
    HostSample,
    Severity,
    SweepResult,
)

__version__ = "0.1.0"

__all__ = [
    "CollectorConfig",
    "ContainerStats",
    "CycleReport",
    "HostSample",
    "Severity",
    "SweepResult",
    "__version__",
]
