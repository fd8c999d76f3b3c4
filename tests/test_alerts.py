"""Tests for alert derivation, scan lifecycle and security scoring."""

import pytest
from conftest import FailingBroadcaster, make_container

from container_telemetry.core.constants import ALERTS_CHANNEL, SCANS_CHANNEL
from container_telemetry.core.errors import ScanStateError
from container_telemetry.core.schemas import Finding, ScanStatus, Severity
from container_telemetry.security.alerts import (
    AlertDeriver,
    ScanService,
    alerts_from_findings,
    extract_findings,
    security_score,
    security_score_for,
    summarize_findings,
)

TRIVY_RESULT = {
    "vulnerabilities": [
        {
            "id": "CVE-2023-1234",
            "severity": "HIGH",
            "package": "nginx",
            "version": "1.21.0",
            "description": "NGINX before 1.21.1 allows a buffer overflow.",
        },
        {
            "id": "CVE-2023-5678",
            "severity": "MEDIUM",
            "package": "openssl",
            "description": "Timing side-channel.",
        },
    ],
    "metadata": {"scanner": "Trivy v0.45.1"},
}

YARA_RESULT = {
    "detections": [
        {
            "id": "MALWARE-001",
            "name": "Trojan.Generic",
            "severity": "CRITICAL",
            "file": "/usr/local/bin/suspicious-binary",
        }
    ]
}


class TestFindings:
    """Tests for extracting findings and deriving messages."""

    def test_one_critical_one_low_yields_one_alert(self):
        findings = [
            Finding(kind="finding", name="a", severity="CRITICAL"),
            Finding(kind="finding", name="b", severity="LOW"),
        ]
        derived = alerts_from_findings(findings)
        assert len(derived) == 1
        assert derived[0][0] == Severity.CRITICAL

    def test_trivy_message(self):
        derived = alerts_from_findings(extract_findings(TRIVY_RESULT))
        assert derived == [
            (
                Severity.HIGH,
                "HIGH severity vulnerability detected in nginx: "
                "NGINX before 1.21.1 allows a buffer overflow.",
            )
        ]

    def test_yara_message(self):
        derived = alerts_from_findings(extract_findings(YARA_RESULT))
        assert derived == [
            (
                Severity.CRITICAL,
                "CRITICAL severity malware detected: Trojan.Generic in /usr/local/bin/suspicious-binary",
            )
        ]

    def test_lowercase_severity_is_recognized(self):
        findings = extract_findings({"findings": [{"name": "x", "severity": "critical"}]})
        assert alerts_from_findings(findings)[0][0] == Severity.CRITICAL

    def test_unknown_severity_is_ignored(self):
        findings = extract_findings({"findings": [{"name": "x", "severity": "SEVERE"}, {"name": "y"}]})
        assert len(findings) == 2
        assert alerts_from_findings(findings) == []

    def test_malformed_sections_are_skipped(self):
        assert extract_findings({"vulnerabilities": "none", "detections": [1, "x"]}) == []
        assert extract_findings(None) == []

    def test_summary(self):
        findings = extract_findings({**TRIVY_RESULT, **YARA_RESULT})
        assert summarize_findings(findings) == "3 findings (1 critical, 1 high, 1 medium, 0 low)"


class TestSecurityScore:
    """Tests for the linear security score."""

    @pytest.mark.parametrize(
        "critical,high,expected",
        [(0, 0, 100), (1, 0, 90), (0, 1, 95), (2, 3, 65), (10, 0, 0), (5, 20, 0)],
    )
    def test_formula(self, critical, high, expected):
        assert security_score(critical, high) == expected

    def test_only_unresolved_alerts_count(self, store):
        record, _, _ = store.upsert_container(make_container("a"))
        store.add_alert(Severity.CRITICAL, "c", "trivy", container_id=record.id)
        resolved = store.add_alert(Severity.CRITICAL, "c2", "trivy", container_id=record.id)
        store.add_alert(Severity.MEDIUM, "m", "trivy", container_id=record.id)
        store.resolve_alert(resolved.id)

        assert security_score_for(store, record.id) == 90
        assert security_score_for(store) == 90


class TestScanService:
    """Tests for the scan lifecycle and alert derivation."""

    def test_complete_scan_derives_alerts(self, store, broadcaster):
        record, _, _ = store.upsert_container(make_container("a"))
        service = ScanService(store, AlertDeriver(store, broadcaster), broadcaster)

        scan = service.start_scan(record.id, "trivy")
        scan, alerts = service.complete_scan(scan.id, TRIVY_RESULT, duration_ms=5400)

        assert scan.status == ScanStatus.COMPLETED.value
        assert scan.summary == "2 findings (0 critical, 1 high, 1 medium, 0 low)"
        assert len(alerts) == 1
        assert alerts[0].source == "trivy"
        assert alerts[0].container_id == record.id
        assert alerts[0].severity == "HIGH"
        assert broadcaster.channels() == [SCANS_CHANNEL, ALERTS_CHANNEL, SCANS_CHANNEL]

    def test_explicit_summary_kept(self, store):
        record, _, _ = store.upsert_container(make_container("a"))
        service = ScanService(store)
        scan = service.start_scan(record.id, "yara")
        scan, alerts = service.complete_scan(scan.id, YARA_RESULT, summary="1 malware detection found")
        assert scan.summary == "1 malware detection found"
        assert len(alerts) == 1

    def test_terminal_scan_cannot_complete_again(self, store):
        record, _, _ = store.upsert_container(make_container("a"))
        service = ScanService(store)
        scan = service.start_scan(record.id, "trivy")
        service.fail_scan(scan.id)

        with pytest.raises(ScanStateError):
            service.complete_scan(scan.id, TRIVY_RESULT)
        assert store.list_alerts() == []

    def test_resolve_publishes(self, store, broadcaster):
        alert = store.add_alert(Severity.HIGH, "x", "manual")
        resolved = AlertDeriver(store, broadcaster).resolve(alert.id)
        assert resolved.resolved is True
        assert broadcaster.published == [(ALERTS_CHANNEL, resolved.to_dict())]

    def test_broadcast_failure_keeps_derived_alerts(self, store):
        record, _, _ = store.upsert_container(make_container("a"))
        failing = FailingBroadcaster()
        findings = [
            Finding(kind="vulnerability", severity="CRITICAL", package="openssl", description="RCE"),
            Finding(kind="vulnerability", severity="LOW", package="zlib", description="minor"),
        ]

        alerts = AlertDeriver(store, failing).derive(record.id, "trivy", findings)

        assert len(alerts) == 1
        assert failing.attempts == 1
        stored = store.list_alerts()
        assert [a.id for a in stored] == [alerts[0].id]
        assert stored[0].severity == "CRITICAL"

    def test_broadcast_failure_keeps_completed_scan(self, store):
        record, _, _ = store.upsert_container(make_container("a"))
        failing = FailingBroadcaster()
        service = ScanService(store, broadcaster=failing)

        scan = service.start_scan(record.id, "trivy")
        scan, alerts = service.complete_scan(scan.id, TRIVY_RESULT)

        assert store.get_scan(scan.id).status == ScanStatus.COMPLETED.value
        assert len(alerts) == 1
        assert len(store.list_alerts()) == 1
        assert failing.attempts == 3
