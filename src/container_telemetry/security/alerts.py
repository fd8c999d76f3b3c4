"""Security alerts derived from scan findings.

Only HIGH and CRITICAL findings become alerts. LOW and MEDIUM findings stay
visible in the scan's own result payload.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from pydantic import ValidationError

from container_telemetry.broadcast.gateway import Broadcaster, notify
from container_telemetry.core.constants import (
    ALERTS_CHANNEL,
    CRITICAL_ALERT_PENALTY,
    HIGH_ALERT_PENALTY,
    SCANS_CHANNEL,
)
from container_telemetry.core.schemas import Finding, Severity
from container_telemetry.storage.models import Alert, Scan
from container_telemetry.storage.store import TelemetryStore

logger = logging.getLogger(__name__)

# Result keys holding finding lists, and the kind each one implies.
FINDING_SECTIONS = {
    "vulnerabilities": "vulnerability",
    "detections": "malware",
    "findings": "finding",
}


def extract_findings(result: dict[str, Any] | None) -> list[Finding]:
    """Collect findings from a scan result payload.

    Entries that are not objects are skipped.
    """
    if not result:
        return []

    findings: list[Finding] = []
    for key, kind in FINDING_SECTIONS.items():
        entries = result.get(key) or []
        if not isinstance(entries, list):
            logger.debug(f"Ignoring non-list '{key}' in scan result")
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            data = {**entry, "kind": kind}
            if data.get("severity") is None:
                data["severity"] = ""
            try:
                findings.append(Finding.model_validate(data))
            except ValidationError as e:
                logger.debug(f"Skipping malformed {kind} entry: {e}")
    return findings


def alerts_from_findings(findings: list[Finding]) -> list[tuple[Severity, str]]:
    """(severity, message) for every finding that warrants an alert."""
    derived: list[tuple[Severity, str]] = []
    for finding in findings:
        level = finding.severity_level
        if level is not None and level.raises_alert:
            derived.append((level, finding.alert_message()))
    return derived


def summarize_findings(findings: list[Finding]) -> str:
    """Human-readable summary, e.g. "3 findings (1 critical, 1 high, 0 medium, 1 low)"."""
    counts = Counter(f.severity_level for f in findings)
    parts = ", ".join(
        f"{counts.get(level, 0)} {level.value.lower()}"
        for level in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)
    )
    noun = "finding" if len(findings) == 1 else "findings"
    return f"{len(findings)} {noun} ({parts})"


def security_score(critical: int, high: int) -> int:
    """clamp(100 - 10 * critical - 5 * high, 0, 100)."""
    score = 100 - CRITICAL_ALERT_PENALTY * critical - HIGH_ALERT_PENALTY * high
    return max(0, min(100, score))


def security_score_for(store: TelemetryStore, container_id: int | None = None) -> int:
    """Security score over unresolved alerts (all alerts when no container is given)."""
    counts = store.count_unresolved_alerts(container_id)
    return security_score(counts[Severity.CRITICAL], counts[Severity.HIGH])


class AlertDeriver:
    """Persists alerts for severe findings and publishes them on the alerts channel."""

    def __init__(self, store: TelemetryStore, broadcaster: Broadcaster | None = None) -> None:
        self.store = store
        self.broadcaster = broadcaster

    def derive(self, container_id: int, source: str, findings: list[Finding]) -> list[Alert]:
        """Create one alert per HIGH/CRITICAL finding.

        Args:
            container_id: Internal id of the scanned container
            source: Scanner name recorded on each alert
            findings: Findings from the completed scan

        Returns:
            Alerts that were persisted
        """
        created: list[Alert] = []
        for severity, message in alerts_from_findings(findings):
            try:
                alert = self.store.add_alert(severity, message, source, container_id=container_id)
            except Exception as e:
                logger.error(f"Failed to persist {severity.value} alert from {source}: {e}")
                continue
            created.append(alert)
            notify(self.broadcaster, ALERTS_CHANNEL, alert.to_dict())

        if created:
            logger.info(f"Derived {len(created)} alert(s) from {source} scan of container {container_id}")
        return created

    def resolve(self, alert_id: int) -> Alert:
        alert = self.store.resolve_alert(alert_id)
        notify(self.broadcaster, ALERTS_CHANNEL, alert.to_dict())
        return alert


class ScanService:
    """Scan lifecycle: running -> completed (with derived alerts) or failed.

    Example:
        ```python
        service = ScanService(store, AlertDeriver(store, broadcaster), broadcaster)
        scan = service.start_scan(container.id, "trivy")
        scan, alerts = service.complete_scan(scan.id, result, duration_ms=5400)
        ```
    """

    def __init__(
        self,
        store: TelemetryStore,
        deriver: AlertDeriver | None = None,
        broadcaster: Broadcaster | None = None,
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.deriver = deriver or AlertDeriver(store, broadcaster)

    def start_scan(self, container_id: int, scan_type: str) -> Scan:
        scan = self.store.create_scan(container_id, scan_type)
        logger.info(f"Started {scan_type} scan {scan.id} for container {container_id}")
        notify(self.broadcaster, SCANS_CHANNEL, scan.to_dict())
        return scan

    def complete_scan(
        self,
        scan_id: int,
        result: dict[str, Any],
        summary: str | None = None,
        duration_ms: int | None = None,
    ) -> tuple[Scan, list[Alert]]:
        """Store the result, derive alerts and publish the completed scan.

        Raises:
            NotFoundError: If the scan does not exist
            ScanStateError: If the scan already reached a terminal state
        """
        findings = extract_findings(result)
        scan = self.store.complete_scan(
            scan_id,
            result=result,
            summary=summary or summarize_findings(findings),
            duration_ms=duration_ms,
        )
        alerts = self.deriver.derive(scan.container_id, scan.scan_type, findings)
        notify(self.broadcaster, SCANS_CHANNEL, scan.to_dict())
        return scan, alerts

    def fail_scan(
        self,
        scan_id: int,
        summary: str = "Scan failed to complete",
        duration_ms: int | None = None,
    ) -> Scan:
        scan = self.store.fail_scan(scan_id, summary=summary, duration_ms=duration_ms)
        logger.warning(f"Scan {scan_id} failed: {summary}")
        notify(self.broadcaster, SCANS_CHANNEL, scan.to_dict())
        return scan
