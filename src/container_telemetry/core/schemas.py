"""Pydantic schemas for the container telemetry collector.

This module defines the data contracts that flow between the collector's
components: runtime observations, parsed samples, scan findings, cycle and
sweep reports, and the collector configuration.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from container_telemetry.core.constants import (
    CPU_SAMPLE_INTERVAL_SECONDS,
    DEFAULT_COLLECTION_INTERVAL_SECONDS,
    DEFAULT_CONTAINER_DELAY_MS,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_SWEEP_INTERVAL_HOURS,
)


def utcnow() -> datetime:
    """Timezone-aware current time used for every persisted timestamp."""
    return datetime.now(UTC)


class ContainerStatus(str, Enum):
    """Boolean running/stopped classification of a container."""

    RUNNING = "running"
    STOPPED = "stopped"


class Severity(str, Enum):
    """Alert and finding severities, lowest first."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, value: str | None) -> Severity | None:
        """Return the matching severity (case-insensitive) or None."""
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def raises_alert(self) -> bool:
        return self in (Severity.HIGH, Severity.CRITICAL)


class LogLevel(str, Enum):
    """Level assigned to a collected container log line."""

    ERROR = "ERROR"
    WARN = "WARN"
    INFO = "INFO"
    DEBUG = "DEBUG"


class ScanStatus(str, Enum):
    """Scan lifecycle states. `running` moves to a terminal state exactly once."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# RUNTIME OBSERVATIONS AND SAMPLES
# =============================================================================


class RuntimeContainer(BaseModel):
    """One container as reported by the runtime's list query."""

    runtime_id: str = Field(..., min_length=1, description="Stable runtime identifier")
    name: str = Field(default="")
    image: str = Field(default="")
    status_text: str = Field(default="", description="Human-readable runtime status")
    ports: str | None = Field(default=None, description="Serialized port mappings")
    created_at: datetime | None = Field(default=None, description="Creation time in the runtime")

    @property
    def status(self) -> ContainerStatus:
        if "running" in self.status_text.lower():
            return ContainerStatus.RUNNING
        return ContainerStatus.STOPPED


class ContainerStats(BaseModel):
    """Parsed output of a single-container stats query.

    CPU and memory percentages are taken verbatim from the runtime. CPU may
    exceed 100 on multi-core hosts and is never clamped.
    """

    runtime_id: str
    cpu_percent: float = 0.0
    mem_percent: float = 0.0
    mem_limit_bytes: float | None = None
    net_in_bytes: float = 0.0
    net_out_bytes: float = 0.0
    disk_read_bytes: float | None = None
    disk_write_bytes: float | None = None


class HostSample(BaseModel):
    """Point-in-time host metrics. RAM and disk values are in megabytes.

    Network counters are cumulative since boot; diff two samples for a rate.
    """

    cpu_usage_percent: float = Field(default=0.0, ge=0, le=100)
    cpu_load_1: float = 0.0
    cpu_load_5: float = 0.0
    cpu_load_15: float = 0.0
    ram_used_mb: float = 0.0
    ram_free_mb: float = 0.0
    ram_total_mb: float = 0.0
    ram_usage_percent: float = 0.0
    disk_used_mb: float = 0.0
    disk_free_mb: float = 0.0
    disk_total_mb: float = 0.0
    disk_usage_percent: float = 0.0
    network_in_bytes: int = Field(default=0, ge=0)
    network_out_bytes: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=utcnow)


class LogEntry(BaseModel):
    """One parsed line of container output."""

    timestamp: datetime = Field(default_factory=utcnow)
    message: str
    log_level: LogLevel = LogLevel.INFO
    source: str = Field(default="stdout", description="Output stream the line came from")


class Finding(BaseModel):
    """One item from a scan result: a vulnerability or a malware detection."""

    model_config = ConfigDict(extra="allow")

    kind: str = Field(default="finding", description="'vulnerability', 'malware' or 'finding'")
    id: str | None = None
    severity: str = ""
    package: str | None = None
    name: str | None = None
    file: str | None = None
    description: str | None = None

    @property
    def severity_level(self) -> Severity | None:
        return Severity.parse(self.severity)

    def alert_message(self) -> str:
        """Compose an alert message from the finding's identifying fields."""
        level = self.severity.strip().upper()
        if self.kind == "vulnerability":
            return (
                f"{level} severity vulnerability detected in {self.package or 'unknown package'}: "
                f"{self.description or self.id or 'no description'}"
            )
        if self.kind == "malware":
            return (
                f"{level} severity malware detected: {self.name or self.id or 'unknown'} "
                f"in {self.file or 'unknown file'}"
            )
        subject = self.name or self.package or self.id or "unnamed finding"
        detail = f": {self.description}" if self.description else ""
        return f"{level} severity finding {subject}{detail}"


# =============================================================================
# REPORTS
# =============================================================================


class StepError(BaseModel):
    """A failure isolated to one sub-step of a cycle."""

    step: str = Field(..., description="Sub-step identifier, e.g. 'reconcile' or 'container:<id>'")
    message: str


class ContainerStatusChange(BaseModel):
    """Payload published when reconciliation creates a record or flips its status."""

    runtime_id: str
    name: str
    image: str
    status: ContainerStatus
    previous_status: ContainerStatus | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class ReconcileResult(BaseModel):
    """Outcome of one inventory reconciliation."""

    observed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    deletion_skipped: bool = Field(
        default=False, description="True when the observed set was empty and deletes were skipped"
    )
    status_changes: list[ContainerStatusChange] = Field(default_factory=list)
    errors: list[StepError] = Field(default_factory=list)


class SweepResult(BaseModel):
    """Counts produced by a retention sweep (or the would-be counts of a dry run)."""

    model_config = ConfigDict(populate_by_name=True)

    metrics_deleted: int = Field(default=0, alias="metricsDeleted")
    alerts_deleted: int = Field(default=0, alias="alertsDeleted")
    scans_deleted: int = Field(default=0, alias="scansDeleted")
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = Field(default=False, alias="dryRun")
    cutoff: datetime | None = None

    @property
    def total(self) -> int:
        return self.metrics_deleted + self.alerts_deleted + self.scans_deleted

    @property
    def success(self) -> bool:
        return not self.errors

    def to_response(self) -> dict[str, object]:
        """Render the camelCase response shape returned to triggering layers."""
        return self.model_dump(mode="json", by_alias=True)


class LogCollectionResult(BaseModel):
    """Outcome of fetching and storing one container's logs."""

    runtime_id: str
    since: datetime
    lines_read: int = 0
    logs_collected: int = 0

    @property
    def message(self) -> str:
        if self.logs_collected == 0:
            return "No new logs to collect"
        return "Logs collected successfully"


class RetentionStats(BaseModel):
    """Row totals and deletion-eligible counts at a given horizon."""

    cutoff: datetime
    total_metrics: int = 0
    total_alerts: int = 0
    total_scans: int = 0
    eligible_metrics: int = 0
    eligible_alerts: int = 0
    eligible_scans: int = 0

    @property
    def total_eligible(self) -> int:
        return self.eligible_metrics + self.eligible_alerts + self.eligible_scans


class CycleReport(BaseModel):
    """Summary of one collection cycle, suitable for a structured response."""

    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    reconcile: ReconcileResult | None = None
    host_sample_stored: bool = False
    container_samples: int = 0
    containers_without_stats: int = 0
    sweep: SweepResult | None = None
    errors: list[StepError] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


# =============================================================================
# CONFIGURATION
# =============================================================================


class RuntimeConfig(BaseModel):
    """How the container runtime is queried."""

    docker_binary: str = Field(default="docker", min_length=1)
    stats_timeout_seconds: float = Field(default=10.0, gt=0)


class BroadcastConfig(BaseModel):
    """Live fan-out endpoint. No URL means broadcasting is a no-op."""

    url: str | None = Field(default=None, description="Endpoint accepting POSTed payloads")
    timeout_seconds: float = Field(default=2.0, gt=0, le=30)


class RetentionConfig(BaseModel):
    """Retention horizon and how often the scheduled sweep runs."""

    enabled: bool = Field(default=True)
    days: int = Field(default=DEFAULT_RETENTION_DAYS, ge=0)
    sweep_interval_hours: float = Field(default=DEFAULT_SWEEP_INTERVAL_HOURS, gt=0)


class CollectorConfig(BaseModel):
    """Top-level collector configuration loaded from YAML/JSON files."""

    database_url: str = Field(default="sqlite:///container_telemetry.db")
    collection_interval_seconds: float = Field(default=DEFAULT_COLLECTION_INTERVAL_SECONDS, ge=1)
    container_delay_ms: int = Field(default=DEFAULT_CONTAINER_DELAY_MS, ge=0, le=5000)
    cpu_sample_interval_seconds: float = Field(default=CPU_SAMPLE_INTERVAL_SECONDS, gt=0, le=10)
    proc_root: Path = Field(default=Path("/proc"), description="procfs mount point")
    disk_path: Path = Field(default=Path("/"), description="Filesystem measured for disk usage")
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Require a SQLAlchemy-style URL."""
        if "://" not in v:
            raise ValueError(f"database_url must be a SQLAlchemy URL, got {v!r}")
        return v
