"""Security module - scan lifecycle, alert derivation and scoring."""

from __future__ import annotations

from container_telemetry.security.alerts import (
    AlertDeriver,
    ScanService,
    alerts_from_findings,
    extract_findings,
    security_score,
    security_score_for,
    summarize_findings,
)

__all__ = [
    "AlertDeriver",
    "ScanService",
    "alerts_from_findings",
    "extract_findings",
    "security_score",
    "security_score_for",
    "summarize_findings",
]
