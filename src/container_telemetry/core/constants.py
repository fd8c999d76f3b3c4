"""Shared constants for the telemetry collector.

Centralized constants to avoid duplication and ensure consistency across modules.
"""

from __future__ import annotations

# Binary multiplier used for every byte-size suffix (K, M, G, T), with or
# without the IEC "i" marker. The container runtime reports sizes this way.
BINARY_STEP = 1024

# Reference collection interval (seconds) and throttle between per-container
# stats queries (milliseconds).
DEFAULT_COLLECTION_INTERVAL_SECONDS = 30
DEFAULT_CONTAINER_DELAY_MS = 100

# Two-point CPU sampling delay for the host sampler (seconds).
CPU_SAMPLE_INTERVAL_SECONDS = 1.0

# Retention defaults
DEFAULT_RETENTION_DAYS = 30
DEFAULT_SWEEP_INTERVAL_HOURS = 24

# Security score penalties per unresolved alert
CRITICAL_ALERT_PENALTY = 10
HIGH_ALERT_PENALTY = 5

# Broadcast channel keys
SYSTEM_CHANNEL = "system"
ALERTS_CHANNEL = "alerts"
SCANS_CHANNEL = "scans"
STATUS_CHANGE_CHANNEL = "container_status_change"
CONTAINER_CHANNEL_PREFIX = "container_"

# Placeholder bounds used when host network counters are unreadable
PLACEHOLDER_NET_IN_RANGE = (500_000, 1_500_000)
PLACEHOLDER_NET_OUT_RANGE = (300_000, 1_100_000)

# Go template passed to `docker stats --format`
DOCKER_STATS_FORMAT = (
    "{{.Container}} {{.CPUPerc}} {{.MemUsage}} {{.MemPerc}} {{.NetIO}} {{.BlockIO}}"
)

# Container log collection: default lookback for the first fetch and the
# default number of rows a log query returns.
DEFAULT_LOG_LOOKBACK_DAYS = 14
DEFAULT_LOG_QUERY_LIMIT = 500
