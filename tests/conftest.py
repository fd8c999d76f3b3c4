"""Shared fixtures for the collector tests."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest

from container_telemetry.core.errors import RuntimeQueryError
from container_telemetry.core.schemas import RuntimeContainer
from container_telemetry.monitoring.base import BaseRuntime
from container_telemetry.storage.store import TelemetryStore


class FakeRuntime(BaseRuntime):
    """In-memory runtime: a mutable container list and canned stats output."""

    def __init__(self, containers: list[RuntimeContainer] | None = None) -> None:
        self.containers = list(containers or [])
        self.stats: dict[str, str] = {}
        self.failing_stats: set[str] = set()
        self.list_error: Exception | None = None
        self.stats_calls: list[str] = []
        self.log_output: dict[str, dict[str, str]] = {}
        self.logs_calls: list[tuple[str, datetime]] = []

    @property
    def name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True

    def list_containers(self) -> list[RuntimeContainer]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.containers)

    def stats_line(self, runtime_id: str) -> str:
        self.stats_calls.append(runtime_id)
        if runtime_id in self.failing_stats:
            raise RuntimeQueryError(f"stats failed for {runtime_id}")
        return self.stats.get(runtime_id, "")

    def logs(self, runtime_id: str, since: datetime) -> dict[str, str]:
        self.logs_calls.append((runtime_id, since))
        return dict(self.log_output.get(runtime_id, {}))


class RecordingBroadcaster:
    """Broadcaster that remembers every publish."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []

    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        self.published.append((channel, payload))

    def close(self) -> None:
        pass

    def channels(self) -> list[str]:
        return [channel for channel, _ in self.published]


class FailingBroadcaster:
    """Broadcaster whose every publish raises."""

    def __init__(self) -> None:
        self.attempts = 0

    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        self.attempts += 1
        raise RuntimeError("broadcast endpoint down")

    def close(self) -> None:
        pass


def make_container(runtime_id: str, status_text: str = "running", name: str | None = None) -> RuntimeContainer:
    return RuntimeContainer(
        runtime_id=runtime_id,
        name=name or f"name-{runtime_id}",
        image="nginx:latest",
        status_text=status_text,
        ports="0.0.0.0:8080->80/tcp",
    )


def stats_line_for(runtime_id: str) -> str:
    return f"{runtime_id} 0.50% 2.1MiB / 512MiB 0.41% 1.2kB / 800B 3MB / 1MB"


@pytest.fixture
def store():
    telemetry_store = TelemetryStore.from_url("sqlite://")
    yield telemetry_store
    telemetry_store.dispose()


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()
