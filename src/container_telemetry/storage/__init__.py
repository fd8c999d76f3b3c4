"""Storage module - ORM models, sessions, store operations and retention."""

from __future__ import annotations

from container_telemetry.storage.models import (
    Alert,
    Base,
    ContainerLog,
    ContainerMetric,
    ContainerRecord,
    Scan,
    SystemMetric,
)
from container_telemetry.storage.retention import RetentionSweeper
from container_telemetry.storage.session import create_db_engine, create_session_factory, init_db
from container_telemetry.storage.store import TelemetryStore

__all__ = [
    "Alert",
    "Base",
    "ContainerLog",
    "ContainerMetric",
    "ContainerRecord",
    "RetentionSweeper",
    "Scan",
    "SystemMetric",
    "TelemetryStore",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
