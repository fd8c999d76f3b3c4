"""Host-wide metric sampler reading procfs directly.

Metrics sourced:
- /proc/stat: aggregate CPU time buckets (two snapshots, one interval apart)
- /proc/loadavg: 1/5/15-minute load averages
- /proc/meminfo: MemTotal, MemFree
- /proc/net/dev: cumulative rx/tx bytes per interface (loopback excluded)
- statvfs of the root filesystem: used/available space

Each source is read independently; an unreadable source degrades that metric
rather than failing the whole sample.
"""

from __future__ import annotations

import logging
import os
import random
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from container_telemetry.core.constants import (
    CPU_SAMPLE_INTERVAL_SECONDS,
    PLACEHOLDER_NET_IN_RANGE,
    PLACEHOLDER_NET_OUT_RANGE,
)
from container_telemetry.core.schemas import HostSample
from container_telemetry.monitoring.base import CpuTimes, cpu_usage_between
from container_telemetry.monitoring.units import bytes_to_mb, kb_to_bytes

logger = logging.getLogger(__name__)

LOOPBACK_INTERFACE = "lo"


class HostSampler:
    """Samples host CPU, load, memory, disk and network counters.

    The CPU measurement blocks for ``cpu_interval_seconds`` (two-point
    sampling). Run it off the caller's critical path when that matters.

    Example:
        ```python
        sampler = HostSampler()
        sample = sampler.sample()
        print(f"CPU: {sample.cpu_usage_percent:.1f}%")
        ```
    """

    def __init__(
        self,
        proc_root: Path | str = Path("/proc"),
        disk_path: Path | str = Path("/"),
        cpu_interval_seconds: float = CPU_SAMPLE_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        cpu_count: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the host sampler.

        Args:
            proc_root: procfs mount point
            disk_path: Path on the filesystem whose usage is reported
            cpu_interval_seconds: Delay between the two CPU snapshots
            sleep: Sleep function (injectable for tests)
            cpu_count: Core count for the load-average fallback (auto-detected)
            rng: Random source for placeholder network counters
        """
        self._proc_root = Path(proc_root)
        self._disk_path = Path(disk_path)
        self._cpu_interval_seconds = cpu_interval_seconds
        self._sleep = sleep
        self._cpu_count = cpu_count or os.cpu_count() or 1
        self._rng = rng or random.Random()

    def sample(self) -> HostSample:
        """Take one host sample. Blocks for the CPU sampling interval."""
        load_1, load_5, load_15 = self.read_load_averages()
        cpu_percent = self.measure_cpu_percent(load_1)

        mem_total, mem_free = self.read_memory()
        mem_used = max(0, mem_total - mem_free)
        ram_percent = (mem_used / mem_total * 100) if mem_total > 0 else 0.0

        disk_used_mb, disk_free_mb = self.read_disk()
        disk_total_mb = disk_used_mb + disk_free_mb
        disk_percent = (disk_used_mb / disk_total_mb * 100) if disk_total_mb > 0 else 0.0

        net_in, net_out = self.read_network()

        return HostSample(
            cpu_usage_percent=cpu_percent,
            cpu_load_1=load_1,
            cpu_load_5=load_5,
            cpu_load_15=load_15,
            ram_used_mb=bytes_to_mb(mem_used),
            ram_free_mb=bytes_to_mb(mem_free),
            ram_total_mb=bytes_to_mb(mem_total),
            ram_usage_percent=ram_percent,
            disk_used_mb=disk_used_mb,
            disk_free_mb=disk_free_mb,
            disk_total_mb=disk_total_mb,
            disk_usage_percent=disk_percent,
            network_in_bytes=net_in,
            network_out_bytes=net_out,
        )

    # ------------------------------------------------------------------
    # CPU
    # ------------------------------------------------------------------

    def read_cpu_times(self) -> CpuTimes | None:
        """Read the aggregate "cpu" line of /proc/stat.

        Format:
            cpu  user nice system idle iowait irq softirq steal guest guest_nice
        """
        stat_path = self._proc_root / "stat"
        try:
            first_line = stat_path.read_text().split("\n", 1)[0]
        except (FileNotFoundError, PermissionError, OSError):
            return None

        parts = first_line.split()
        if len(parts) < 8 or parts[0] != "cpu":
            return None
        try:
            values = [int(v) for v in parts[1:8]]
        except ValueError:
            return None
        return CpuTimes(*values)

    def measure_cpu_percent(self, load_1: float | None = None) -> float:
        """CPU usage over one sampling interval, with a load-average fallback."""
        first = self.read_cpu_times()
        if first is not None:
            self._sleep(self._cpu_interval_seconds)
            second = self.read_cpu_times()
            if second is not None:
                return cpu_usage_between(first, second)

        if load_1 is None:
            load_1 = self.read_load_averages()[0]
        estimate = min(load_1 / self._cpu_count * 100, 100.0)
        logger.warning(
            f"CPU counters unreadable at {self._proc_root / 'stat'}; "
            f"using degraded CPU estimate from load average ({estimate:.1f}%)"
        )
        return max(0.0, estimate)

    # ------------------------------------------------------------------
    # Load, memory, disk, network
    # ------------------------------------------------------------------

    def read_load_averages(self) -> tuple[float, float, float]:
        """Read 1/5/15-minute load averages from /proc/loadavg."""
        try:
            parts = (self._proc_root / "loadavg").read_text().split()
            return float(parts[0]), float(parts[1]), float(parts[2])
        except (FileNotFoundError, PermissionError, OSError, ValueError, IndexError):
            pass

        try:
            return os.getloadavg()
        except OSError:
            logger.warning("Load averages unavailable; reporting zeros")
            return 0.0, 0.0, 0.0

    def read_memory(self) -> tuple[int, int]:
        """Read total and free memory (bytes) from /proc/meminfo.

        Format:
            MemTotal:       16318480 kB
            MemFree:         1253892 kB
        """
        values: dict[str, int] = {}
        try:
            content = (self._proc_root / "meminfo").read_text()
            for line in content.strip().split("\n"):
                parts = line.split()
                if len(parts) >= 2 and parts[0] in ("MemTotal:", "MemFree:"):
                    values[parts[0].rstrip(":")] = kb_to_bytes(int(parts[1]))
        except (FileNotFoundError, PermissionError, OSError, ValueError):
            logger.warning(f"Could not read {self._proc_root / 'meminfo'}; memory reported as zero")

        return values.get("MemTotal", 0), values.get("MemFree", 0)

    def read_disk(self) -> tuple[float, float]:
        """Used and available space (MB) of the root filesystem."""
        try:
            usage = shutil.disk_usage(self._disk_path)
        except OSError as e:
            logger.warning(f"Disk usage query failed for {self._disk_path}: {e}")
            return 0.0, 0.0
        return bytes_to_mb(usage.used), bytes_to_mb(usage.free)

    def read_network(self) -> tuple[int, int]:
        """Sum rx/tx byte counters across all non-loopback interfaces.

        Format (after two header lines):
            eth0: 123456 789 0 0 0 0 0 0 654321 456 0 0 0 0 0 0

        Falls back to bounded placeholder values if /proc/net/dev is unreadable.
        """
        net_dev = self._proc_root / "net" / "dev"
        try:
            content = net_dev.read_text()
        except (FileNotFoundError, PermissionError, OSError) as e:
            net_in = self._rng.randint(*PLACEHOLDER_NET_IN_RANGE)
            net_out = self._rng.randint(*PLACEHOLDER_NET_OUT_RANGE)
            logger.warning(
                f"Could not read {net_dev} ({e}); storing placeholder network counters "
                f"in={net_in} out={net_out}"
            )
            return net_in, net_out

        total_in = 0
        total_out = 0
        for line in content.split("\n")[2:]:
            interface, sep, data = line.partition(":")
            if not sep:
                continue
            if interface.strip() == LOOPBACK_INTERFACE:
                continue
            fields = data.split()
            if len(fields) < 9:
                continue
            try:
                total_in += int(fields[0])
                total_out += int(fields[8])
            except ValueError:
                continue

        return total_in, total_out
