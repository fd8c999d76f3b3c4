"""Base types for metric sources.

The container runtime is reached through the BaseRuntime interface so the
collector can run against Docker in production and a fake in tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from container_telemetry.core.schemas import RuntimeContainer


@dataclass(frozen=True)
class CpuTimes:
    """Aggregate CPU time buckets from the first line of /proc/stat (in ticks)."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0

    @property
    def total(self) -> int:
        return self.user + self.nice + self.system + self.idle + self.iowait + self.irq + self.softirq

    @property
    def idle_total(self) -> int:
        """Idle time including time waiting on I/O."""
        return self.idle + self.iowait


def cpu_usage_between(first: CpuTimes, second: CpuTimes) -> float:
    """CPU usage percent over the interval between two snapshots.

    usage = 1 - (d_idle + d_iowait) / d_total, clamped to [0, 100]. A zero or
    negative total delta (no ticks elapsed, counter reset) returns 0.
    """
    total_delta = second.total - first.total
    if total_delta <= 0:
        return 0.0
    idle_delta = second.idle_total - first.idle_total
    usage = (1.0 - idle_delta / total_delta) * 100.0
    return max(0.0, min(100.0, usage))


class BaseRuntime(ABC):
    """Abstract container runtime.

    Implementations:
    - DockerRuntime: Docker SDK for listing and logs, docker CLI for stats lines
    """

    @abstractmethod
    def list_containers(self) -> list[RuntimeContainer]:
        """Return every container (running and stopped) in a single pass.

        Raises:
            RuntimeQueryError: If the runtime cannot be queried
        """

    @abstractmethod
    def stats_line(self, runtime_id: str) -> str:
        """Return the raw tabular stats output for one container.

        Empty output means the runtime had no stats (e.g. the container just
        stopped).

        Raises:
            RuntimeQueryError: If the stats query fails
        """

    @abstractmethod
    def logs(self, runtime_id: str, since: datetime) -> dict[str, str]:
        """Return timestamped log text written since ``since``, keyed by stream.

        Raises:
            RuntimeQueryError: If the container or its logs cannot be read
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the runtime can be reached."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this runtime."""
