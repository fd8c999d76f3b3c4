"""Runners module - container runtime adapters."""

from __future__ import annotations

from container_telemetry.runners.docker_runtime import DockerRuntime

__all__ = ["DockerRuntime"]
