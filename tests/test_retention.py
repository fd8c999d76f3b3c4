"""Tests for RetentionSweeper."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import make_container

from container_telemetry.core.schemas import ContainerStats, ScanStatus, Severity, utcnow
from container_telemetry.storage.models import Alert, ContainerMetric, Scan
from container_telemetry.storage.retention import RetentionSweeper


def age(store, model, row_id, days):
    with store.session() as session:
        session.get(model, row_id).timestamp = utcnow() - timedelta(days=days)


@pytest.fixture
def seeded(store):
    """One old and one fresh row of every kind, across every retention rule."""
    record, _, _ = store.upsert_container(make_container("a"))
    sample = ContainerStats(runtime_id="a", cpu_percent=1.0, mem_percent=1.0)

    rows = {
        "old_metric": store.add_container_metric(record.id, sample).id,
        "new_metric": store.add_container_metric(record.id, sample).id,
        "old_resolved": store.add_alert(Severity.HIGH, "old resolved", "trivy", record.id).id,
        "old_open": store.add_alert(Severity.CRITICAL, "old open", "trivy", record.id).id,
        "new_resolved": store.add_alert(Severity.HIGH, "new resolved", "trivy", record.id).id,
        "old_completed": store.create_scan(record.id, "trivy").id,
        "old_failed": store.create_scan(record.id, "trivy").id,
        "old_running": store.create_scan(record.id, "yara").id,
    }
    store.resolve_alert(rows["old_resolved"])
    store.resolve_alert(rows["new_resolved"])
    store.complete_scan(rows["old_completed"], {}, "0 findings")
    store.fail_scan(rows["old_failed"], "crashed")

    age(store, ContainerMetric, rows["old_metric"], 40)
    age(store, Alert, rows["old_resolved"], 40)
    age(store, Alert, rows["old_open"], 40)
    for key in ("old_completed", "old_failed", "old_running"):
        age(store, Scan, rows[key], 40)
    return rows


def count(store, model):
    with store.session() as session:
        return session.query(model).count()


class TestRetentionSweeper:
    """Tests for RetentionSweeper."""

    def test_sweep_rules(self, store, seeded):
        result = RetentionSweeper(store).sweep(days=30)

        assert result.metrics_deleted == 1
        assert result.alerts_deleted == 1
        assert result.scans_deleted == 1
        assert result.errors == []

        with store.session() as session:
            assert session.get(Alert, seeded["old_open"]) is not None
            assert session.get(Alert, seeded["old_resolved"]) is None
            assert session.get(Alert, seeded["new_resolved"]) is not None
            assert session.get(Scan, seeded["old_completed"]) is None
            assert session.get(Scan, seeded["old_failed"]).status == ScanStatus.FAILED.value
            assert session.get(Scan, seeded["old_running"]).status == ScanStatus.RUNNING.value
            assert session.get(ContainerMetric, seeded["new_metric"]) is not None

    @pytest.mark.parametrize("days", [0, 1, 30, 39])
    def test_unresolved_alert_never_deleted(self, store, seeded, days):
        RetentionSweeper(store).sweep(days=days)
        with store.session() as session:
            assert session.get(Alert, seeded["old_open"]) is not None

    def test_dry_run_counts_without_deleting(self, store, seeded):
        before = [count(store, m) for m in (ContainerMetric, Alert, Scan)]

        result = RetentionSweeper(store).sweep(days=30, dry_run=True)

        assert result.dry_run is True
        assert (result.metrics_deleted, result.alerts_deleted, result.scans_deleted) == (1, 1, 1)
        assert [count(store, m) for m in (ContainerMetric, Alert, Scan)] == before

    def test_response_shape(self, store):
        response = RetentionSweeper(store).sweep(days=30).to_response()
        assert response["metricsDeleted"] == 0
        assert response["alertsDeleted"] == 0
        assert response["scansDeleted"] == 0
        assert response["errors"] == []

    def test_class_failure_is_isolated(self, store, seeded):
        sweeper = RetentionSweeper(store)
        original = sweeper._apply

        def flaky(model, where, dry_run):
            if model is Alert:
                raise RuntimeError("alerts table locked")
            return original(model, where, dry_run)

        with patch.object(sweeper, "_apply", side_effect=flaky):
            result = sweeper.sweep(days=30)

        assert result.metrics_deleted == 1
        assert result.scans_deleted == 1
        assert result.alerts_deleted == 0
        assert len(result.errors) == 1
        assert "alerts table locked" in result.errors[0]
        assert result.success is False

    def test_negative_days_rejected(self, store):
        with pytest.raises(ValueError):
            RetentionSweeper(store).sweep(days=-1)

    def test_stats(self, store, seeded):
        stats = RetentionSweeper(store).stats(days=30)
        assert stats.total_metrics == 2
        assert stats.total_alerts == 3
        assert stats.total_scans == 3
        assert stats.total_eligible == 3
