"""Configuration loading utilities.

Supports YAML and JSON configuration files with schema validation. The
DATABASE_URL environment variable takes precedence over the file value.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import yaml

from container_telemetry.core.schemas import CollectorConfig

DATABASE_URL_ENV = "DATABASE_URL"


def load_config(path: Path | str | None = None) -> CollectorConfig:
    """Load and validate a collector configuration file.

    Args:
        path: Path to YAML or JSON configuration file. None returns defaults.

    Returns:
        Validated CollectorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If file format is unsupported
        pydantic.ValidationError: If config is invalid
    """
    if path is None:
        return _apply_env(CollectorConfig())

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    with open(path, encoding="utf-8") as f:
        if suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    return _apply_env(CollectorConfig.model_validate(data or {}))


def _apply_env(config: CollectorConfig) -> CollectorConfig:
    database_url = os.getenv(DATABASE_URL_ENV)
    if database_url:
        return config.model_copy(update={"database_url": database_url})
    return config


SAMPLE_CONFIG = """\
# Container telemetry collector configuration

# SQLAlchemy URL (overridden by the DATABASE_URL environment variable)
database_url: "sqlite:///container_telemetry.db"

# Seconds between collection cycles
collection_interval_seconds: 30

# Pause between per-container stats queries (ms)
container_delay_ms: 100

# Two-point CPU sampling delay (seconds)
cpu_sample_interval_seconds: 1.0

# Host metric sources
proc_root: /proc
disk_path: /

runtime:
  docker_binary: docker
  stats_timeout_seconds: 10

# Live fan-out endpoint; leave url empty to disable broadcasting
broadcast:
  url: null
  timeout_seconds: 2.0

retention:
  enabled: true
  days: 30
  sweep_interval_hours: 24
"""
