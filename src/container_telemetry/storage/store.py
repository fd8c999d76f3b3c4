"""Persistence operations over the telemetry store.

TelemetryStore is the only component that talks to the database. It enforces
the referential rules itself instead of trusting the backing store: writes
that name a container check it exists, container deletes cascade through the
ORM, and scans move out of `running` exactly once.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import pandas as pd
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from container_telemetry.core.constants import DEFAULT_LOG_QUERY_LIMIT
from container_telemetry.core.errors import NotFoundError, ScanStateError
from container_telemetry.core.schemas import (
    ContainerStats,
    ContainerStatus,
    HostSample,
    LogEntry,
    LogLevel,
    RuntimeContainer,
    ScanStatus,
    Severity,
    utcnow,
)
from container_telemetry.storage.models import (
    Alert,
    ContainerLog,
    ContainerMetric,
    ContainerRecord,
    Scan,
    SystemMetric,
)
from container_telemetry.storage.session import (
    create_db_engine,
    create_session_factory,
    init_db,
)

logger = logging.getLogger(__name__)


class TelemetryStore:
    """Storage manager for containers, samples, alerts and scans.

    Example:
        ```python
        store = TelemetryStore.from_url("sqlite:///telemetry.db")
        record, created, _ = store.upsert_container(observed)
        store.add_container_metric(record.id, stats)
        ```
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, create_tables: bool = True) -> TelemetryStore:
        """Build a store (and its engine) from a SQLAlchemy URL."""
        engine = create_db_engine(database_url)
        if create_tables:
            init_db(engine)
        return cls(create_session_factory(engine))

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Transactional session: commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections (used on shutdown)."""
        bind = self._session_factory.kw.get("bind")
        if bind is not None:
            bind.dispose()

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def list_containers(self, status: ContainerStatus | None = None) -> list[ContainerRecord]:
        with self.session() as session:
            stmt = select(ContainerRecord).order_by(ContainerRecord.id)
            if status is not None:
                stmt = stmt.where(ContainerRecord.status == status.value)
            return list(session.scalars(stmt))

    def get_container_by_runtime_id(self, runtime_id: str) -> ContainerRecord | None:
        with self.session() as session:
            return session.scalars(
                select(ContainerRecord).where(ContainerRecord.runtime_id == runtime_id)
            ).first()

    def upsert_container(
        self, observed: RuntimeContainer
    ) -> tuple[ContainerRecord, bool, ContainerStatus | None]:
        """Insert or update the record keyed by the observed runtime id.

        Returns:
            Tuple of (record, created, previous_status). previous_status is None
            for newly created records.
        """
        try:
            return self._upsert_container(observed)
        except IntegrityError:
            # Another collector inserted the same runtime id first; update instead.
            logger.debug(f"Concurrent insert for {observed.runtime_id[:12]}, retrying as update")
            return self._upsert_container(observed)

    def _upsert_container(
        self, observed: RuntimeContainer
    ) -> tuple[ContainerRecord, bool, ContainerStatus | None]:
        now = utcnow()
        with self.session() as session:
            record = session.scalars(
                select(ContainerRecord).where(ContainerRecord.runtime_id == observed.runtime_id)
            ).first()

            if record is None:
                record = ContainerRecord(
                    runtime_id=observed.runtime_id,
                    name=observed.name,
                    image=observed.image,
                    status=observed.status.value,
                    ports=observed.ports or None,
                    runtime_created_at=observed.created_at,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                session.flush()
                return record, True, None

            previous = ContainerStatus(record.status)
            record.name = observed.name
            record.image = observed.image
            record.status = observed.status.value
            record.ports = observed.ports or None
            if observed.created_at is not None:
                record.runtime_created_at = observed.created_at
            record.updated_at = now
            return record, False, previous

    def delete_containers_not_in(self, runtime_ids: Collection[str]) -> list[str]:
        """Delete every container whose runtime id is not in ``runtime_ids``.

        Dependent metrics, alerts, scans and logs are deleted in the same
        transaction with set-based statements, never row by row. An empty
        collection deletes nothing.

        Returns:
            Runtime ids of the deleted containers
        """
        if not runtime_ids:
            return []

        with self.session() as session:
            stale = session.execute(
                select(ContainerRecord.id, ContainerRecord.runtime_id).where(
                    ContainerRecord.runtime_id.not_in(list(runtime_ids))
                )
            ).all()
            if not stale:
                return []

            ids = [row.id for row in stale]
            for model in (ContainerMetric, Alert, Scan, ContainerLog):
                session.execute(
                    delete(model)
                    .where(model.container_id.in_(ids))
                    .execution_options(synchronize_session=False)
                )
            session.execute(
                delete(ContainerRecord)
                .where(ContainerRecord.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            return [row.runtime_id for row in stale]

    # ------------------------------------------------------------------
    # Samples
    # ------------------------------------------------------------------

    def add_container_metric(self, container_id: int, stats: ContainerStats) -> ContainerMetric:
        with self.session() as session:
            if session.get(ContainerRecord, container_id) is None:
                raise NotFoundError(f"Container {container_id} not found")
            metric = ContainerMetric(
                container_id=container_id,
                cpu_usage=stats.cpu_percent,
                mem_usage=stats.mem_percent,
                mem_limit=stats.mem_limit_bytes,
                net_in=stats.net_in_bytes,
                net_out=stats.net_out_bytes,
                disk_read=stats.disk_read_bytes,
                disk_write=stats.disk_write_bytes,
                timestamp=utcnow(),
            )
            session.add(metric)
            session.flush()
            return metric

    def add_system_metric(self, sample: HostSample) -> SystemMetric:
        with self.session() as session:
            metric = SystemMetric(
                cpu_usage=sample.cpu_usage_percent,
                cpu_load_1=sample.cpu_load_1,
                cpu_load_5=sample.cpu_load_5,
                cpu_load_15=sample.cpu_load_15,
                ram_used=sample.ram_used_mb,
                ram_free=sample.ram_free_mb,
                ram_total=sample.ram_total_mb,
                ram_usage_percent=sample.ram_usage_percent,
                disk_used=sample.disk_used_mb,
                disk_free=sample.disk_free_mb,
                disk_total=sample.disk_total_mb,
                disk_usage_percent=sample.disk_usage_percent,
                network_in=sample.network_in_bytes,
                network_out=sample.network_out_bytes,
                timestamp=sample.timestamp,
            )
            session.add(metric)
            session.flush()
            return metric

    def metrics_frame(
        self,
        kind: str = "container",
        limit: int = 100,
        runtime_id: str | None = None,
    ) -> pd.DataFrame:
        """Most recent samples as a DataFrame, newest first.

        Args:
            kind: "container" or "system"
            limit: Maximum number of rows
            runtime_id: Restrict container samples to one container

        Returns:
            DataFrame with one row per sample
        """
        with self.session() as session:
            if kind == "system":
                rows = session.scalars(
                    select(SystemMetric).order_by(SystemMetric.timestamp.desc()).limit(limit)
                )
                return pd.DataFrame([row.to_dict() for row in rows])

            if kind != "container":
                raise ValueError(f"Unknown metrics kind: {kind}. Use 'container' or 'system'")

            stmt = (
                select(ContainerMetric, ContainerRecord.runtime_id, ContainerRecord.name)
                .join(ContainerRecord, ContainerMetric.container_id == ContainerRecord.id)
                .order_by(ContainerMetric.timestamp.desc())
                .limit(limit)
            )
            if runtime_id is not None:
                stmt = stmt.where(ContainerRecord.runtime_id == runtime_id)

            data: list[dict[str, Any]] = []
            for metric, rid, name in session.execute(stmt):
                row = metric.to_dict()
                row["runtime_id"] = rid
                row["name"] = name
                data.append(row)
            return pd.DataFrame(data)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def add_alert(
        self,
        severity: Severity,
        message: str,
        source: str,
        container_id: int | None = None,
    ) -> Alert:
        with self.session() as session:
            if container_id is not None and session.get(ContainerRecord, container_id) is None:
                raise NotFoundError(f"Container {container_id} not found")
            alert = Alert(
                severity=severity.value,
                message=message,
                source=source,
                container_id=container_id,
                resolved=False,
                timestamp=utcnow(),
            )
            session.add(alert)
            session.flush()
            return alert

    def resolve_alert(self, alert_id: int) -> Alert:
        """Mark an alert resolved. Resolution is the only allowed alert mutation."""
        with self.session() as session:
            alert = session.get(Alert, alert_id)
            if alert is None:
                raise NotFoundError(f"Alert {alert_id} not found")
            alert.resolved = True
            return alert

    def list_alerts(
        self,
        resolved: bool | None = None,
        container_id: int | None = None,
        limit: int = 100,
    ) -> list[Alert]:
        with self.session() as session:
            stmt = select(Alert).order_by(Alert.timestamp.desc(), Alert.id.desc()).limit(limit)
            if resolved is not None:
                stmt = stmt.where(Alert.resolved == resolved)
            if container_id is not None:
                stmt = stmt.where(Alert.container_id == container_id)
            return list(session.scalars(stmt))

    def count_unresolved_alerts(self, container_id: int | None = None) -> dict[Severity, int]:
        """Unresolved alert counts per severity, optionally for one container."""
        with self.session() as session:
            stmt = (
                select(Alert.severity, func.count())
                .where(Alert.resolved.is_(False))
                .group_by(Alert.severity)
            )
            if container_id is not None:
                stmt = stmt.where(Alert.container_id == container_id)
            counts = {level: 0 for level in Severity}
            for severity, count in session.execute(stmt):
                level = Severity.parse(severity)
                if level is not None:
                    counts[level] += int(count)
            return counts

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def add_container_logs(self, container_id: int, entries: Iterable[LogEntry]) -> int:
        """Store parsed log lines for a container.

        Returns:
            Number of rows written
        """
        with self.session() as session:
            if session.get(ContainerRecord, container_id) is None:
                raise NotFoundError(f"Container {container_id} not found")
            rows = [
                ContainerLog(
                    container_id=container_id,
                    log_level=entry.log_level.value,
                    message=entry.message,
                    source=entry.source,
                    timestamp=entry.timestamp,
                )
                for entry in entries
            ]
            session.add_all(rows)
            return len(rows)

    def latest_log_timestamp(self, container_id: int) -> datetime | None:
        with self.session() as session:
            return session.scalar(
                select(func.max(ContainerLog.timestamp)).where(
                    ContainerLog.container_id == container_id
                )
            )

    def list_container_logs(
        self,
        container_id: int,
        level: LogLevel | None = None,
        source: str | None = None,
        since: datetime | None = None,
        limit: int = DEFAULT_LOG_QUERY_LIMIT,
    ) -> list[ContainerLog]:
        """Stored log lines for a container, newest first."""
        with self.session() as session:
            stmt = (
                select(ContainerLog)
                .where(ContainerLog.container_id == container_id)
                .order_by(ContainerLog.timestamp.desc(), ContainerLog.id.desc())
                .limit(limit)
            )
            if level is not None:
                stmt = stmt.where(ContainerLog.log_level == level.value)
            if source is not None:
                stmt = stmt.where(ContainerLog.source == source)
            if since is not None:
                stmt = stmt.where(ContainerLog.timestamp >= since)
            return list(session.scalars(stmt))

    def count_logs_by_level(
        self, container_id: int, since: datetime | None = None
    ) -> dict[LogLevel, int]:
        with self.session() as session:
            stmt = (
                select(ContainerLog.log_level, func.count())
                .where(ContainerLog.container_id == container_id)
                .group_by(ContainerLog.log_level)
            )
            if since is not None:
                stmt = stmt.where(ContainerLog.timestamp >= since)
            counts = {level: 0 for level in LogLevel}
            for level, count in session.execute(stmt):
                counts[LogLevel(level)] += int(count)
            return counts

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def create_scan(self, container_id: int, scan_type: str) -> Scan:
        with self.session() as session:
            if session.get(ContainerRecord, container_id) is None:
                raise NotFoundError(f"Container {container_id} not found")
            scan = Scan(
                container_id=container_id,
                scan_type=scan_type,
                status=ScanStatus.RUNNING.value,
                timestamp=utcnow(),
            )
            session.add(scan)
            session.flush()
            return scan

    def get_scan(self, scan_id: int) -> Scan:
        with self.session() as session:
            scan = session.get(Scan, scan_id)
            if scan is None:
                raise NotFoundError(f"Scan {scan_id} not found")
            return scan

    def complete_scan(
        self,
        scan_id: int,
        result: dict[str, Any],
        summary: str,
        duration_ms: int | None = None,
    ) -> Scan:
        return self._finish_scan(scan_id, ScanStatus.COMPLETED, summary, duration_ms, result)

    def fail_scan(self, scan_id: int, summary: str, duration_ms: int | None = None) -> Scan:
        return self._finish_scan(scan_id, ScanStatus.FAILED, summary, duration_ms, None)

    def _finish_scan(
        self,
        scan_id: int,
        status: ScanStatus,
        summary: str,
        duration_ms: int | None,
        result: dict[str, Any] | None,
    ) -> Scan:
        with self.session() as session:
            scan = session.get(Scan, scan_id)
            if scan is None:
                raise NotFoundError(f"Scan {scan_id} not found")
            if scan.status != ScanStatus.RUNNING.value:
                raise ScanStateError(
                    f"Scan {scan_id} is already {scan.status}; cannot mark it {status.value}"
                )
            scan.status = status.value
            scan.summary = summary
            scan.duration_ms = duration_ms
            if result is not None:
                scan.result = result
            return scan
