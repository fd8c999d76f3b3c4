"""Monitoring module - metric sources and parsers.

Provides:
- HostSampler: procfs-based host CPU/memory/disk/network sampler
- parse_stats_line: container runtime stats line parser
- parse_log_line: container log line parser

Shared utilities:
- units: byte-size and percentage parsing
"""

from __future__ import annotations

from container_telemetry.monitoring.base import BaseRuntime, CpuTimes, cpu_usage_between
from container_telemetry.monitoring.host_sampler import HostSampler
from container_telemetry.monitoring.log_parser import parse_log_line, parse_log_output
from container_telemetry.monitoring.stats_parser import parse_stats_line, parse_stats_output
from container_telemetry.monitoring.units import (
    bytes_to_mb,
    parse_bytes,
    parse_percent,
    try_parse_bytes,
)

__all__ = [
    "BaseRuntime",
    "CpuTimes",
    "HostSampler",
    "bytes_to_mb",
    "cpu_usage_between",
    "parse_bytes",
    "parse_log_line",
    "parse_log_output",
    "parse_percent",
    "parse_stats_line",
    "parse_stats_output",
    "try_parse_bytes",
]
