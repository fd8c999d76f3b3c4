"""Core module - configuration, schemas and errors."""

from __future__ import annotations

from container_telemetry.core.config import load_config
from container_telemetry.core.errors import (
    NotFoundError,
    RuntimeQueryError,
    ScanStateError,
    TelemetryError,
)
from container_telemetry.core.schemas import (
    BroadcastConfig,
    CollectorConfig,
    ContainerStats,
    ContainerStatus,
    ContainerStatusChange,
    CycleReport,
    Finding,
    HostSample,
    ReconcileResult,
    RetentionConfig,
    RetentionStats,
    RuntimeConfig,
    RuntimeContainer,
    ScanStatus,
    Severity,
    StepError,
    SweepResult,
)

__all__ = [
    "BroadcastConfig",
    "CollectorConfig",
    "ContainerStats",
    "ContainerStatus",
    "ContainerStatusChange",
    "CycleReport",
    "Finding",
    "HostSample",
    "load_config",
    "NotFoundError",
    "ReconcileResult",
    "RetentionConfig",
    "RetentionStats",
    "RuntimeConfig",
    "RuntimeContainer",
    "RuntimeQueryError",
    "ScanStateError",
    "ScanStatus",
    "Severity",
    "StepError",
    "SweepResult",
    "TelemetryError",
]
