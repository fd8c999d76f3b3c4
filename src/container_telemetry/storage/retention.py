"""Retention sweeper for aged samples, alerts and scans.

Deletion rules per class:
- container metrics: older than the cutoff, unconditionally
- alerts: older than the cutoff and resolved
- scans: older than the cutoff and completed

Each class runs in its own transaction so one failure does not block the
others. Host samples are not swept.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, delete, func, select

from container_telemetry.core.constants import DEFAULT_RETENTION_DAYS
from container_telemetry.core.schemas import RetentionStats, ScanStatus, SweepResult, utcnow
from container_telemetry.storage.models import Alert, ContainerMetric, Scan
from container_telemetry.storage.store import TelemetryStore

logger = logging.getLogger(__name__)


def _metric_predicate(cutoff: datetime) -> ColumnElement[bool]:
    return ContainerMetric.timestamp < cutoff


def _alert_predicate(cutoff: datetime) -> ColumnElement[bool]:
    return (Alert.timestamp < cutoff) & Alert.resolved.is_(True)


def _scan_predicate(cutoff: datetime) -> ColumnElement[bool]:
    return (Scan.timestamp < cutoff) & (Scan.status == ScanStatus.COMPLETED.value)


_CLASSES: list[tuple[str, type, Callable[[datetime], ColumnElement[bool]]]] = [
    ("metrics", ContainerMetric, _metric_predicate),
    ("alerts", Alert, _alert_predicate),
    ("scans", Scan, _scan_predicate),
]


class RetentionSweeper:
    """Deletes (or counts, in dry-run mode) rows older than a horizon in days.

    Example:
        ```python
        sweeper = RetentionSweeper(store)
        result = sweeper.sweep(days=30, dry_run=True)
        print(result.to_response())
        ```
    """

    def __init__(self, store: TelemetryStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self._clock = clock

    def cutoff_for(self, days: int) -> datetime:
        if days < 0:
            raise ValueError(f"Retention days must be >= 0, got {days}")
        return self._clock() - timedelta(days=days)

    def sweep(self, days: int = DEFAULT_RETENTION_DAYS, dry_run: bool = False) -> SweepResult:
        """Run one sweep.

        Args:
            days: Retention horizon in days
            dry_run: Count eligible rows instead of deleting them

        Returns:
            SweepResult with per-class counts and any per-class errors
        """
        cutoff = self.cutoff_for(days)
        counts: dict[str, int] = {}
        errors: list[str] = []

        for label, model, predicate in _CLASSES:
            try:
                counts[label] = self._apply(model, predicate(cutoff), dry_run)
            except Exception as e:
                logger.error(f"Retention sweep failed for {label}: {e}")
                errors.append(f"Failed to {'count' if dry_run else 'delete'} {label}: {e}")
                counts[label] = 0

        result = SweepResult(
            metrics_deleted=counts["metrics"],
            alerts_deleted=counts["alerts"],
            scans_deleted=counts["scans"],
            errors=errors,
            dry_run=dry_run,
            cutoff=cutoff,
        )
        verb = "Would delete" if dry_run else "Deleted"
        logger.info(
            f"{verb} {result.metrics_deleted} metrics, {result.alerts_deleted} alerts, "
            f"{result.scans_deleted} scans older than {days} days"
        )
        return result

    def _apply(self, model: type, where: ColumnElement[bool], dry_run: bool) -> int:
        with self.store.session() as session:
            if dry_run:
                return int(session.scalar(select(func.count()).select_from(model).where(where)) or 0)
            deleted = session.execute(delete(model).where(where).execution_options(synchronize_session=False))
            return int(deleted.rowcount or 0)

    def stats(self, days: int = DEFAULT_RETENTION_DAYS) -> RetentionStats:
        """Row totals and deletion-eligible counts at the given horizon."""
        cutoff = self.cutoff_for(days)
        with self.store.session() as session:

            def count(model: type, where: ColumnElement[bool] | None = None) -> int:
                stmt = select(func.count()).select_from(model)
                if where is not None:
                    stmt = stmt.where(where)
                return int(session.scalar(stmt) or 0)

            return RetentionStats(
                cutoff=cutoff,
                total_metrics=count(ContainerMetric),
                total_alerts=count(Alert),
                total_scans=count(Scan),
                eligible_metrics=count(ContainerMetric, _metric_predicate(cutoff)),
                eligible_alerts=count(Alert, _alert_predicate(cutoff)),
                eligible_scans=count(Scan, _scan_predicate(cutoff)),
            )
