"""Tests for HostSampler against a fake procfs tree."""

import logging
import random
from collections import namedtuple
from pathlib import Path
from unittest.mock import patch

import pytest

from container_telemetry.monitoring.base import CpuTimes, cpu_usage_between
from container_telemetry.monitoring.host_sampler import HostSampler

DiskUsage = namedtuple("DiskUsage", ["total", "used", "free"])

MIB = 1024 * 1024

NET_DEV = """\
Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo: 999999     100    0    0    0     0          0         0   999999     100    0    0    0     0       0          0
  eth0: 1000       10    0    0    0     0          0         0     2000      20    0    0    0     0       0          0
 wlan0:  500        5    0    0    0     0          0         0      700       7    0    0    0     0       0          0
"""

MEMINFO = """\
MemTotal:        4096 kB
MemFree:         1024 kB
MemAvailable:    2048 kB
"""


def write_proc(root: Path, stat: str | None = None, with_net: bool = True) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    if stat is not None:
        (root / "stat").write_text(stat)
    (root / "loadavg").write_text("0.50 0.40 0.30 1/100 12345\n")
    (root / "meminfo").write_text(MEMINFO)
    if with_net:
        (root / "net").mkdir(exist_ok=True)
        (root / "net" / "dev").write_text(NET_DEV)
    return root


def cpu_line(user, nice, system, idle, iowait, irq, softirq):
    return f"cpu  {user} {nice} {system} {idle} {iowait} {irq} {softirq} 0 0 0\ncpu0 1 2 3 4 5 6 7 0 0 0\n"


class TestCpuUsageBetween:
    """Tests for the two-snapshot CPU calculation."""

    def test_basic_delta(self):
        first = CpuTimes(user=100, idle=100)
        second = CpuTimes(user=150, idle=150)
        assert cpu_usage_between(first, second) == pytest.approx(50.0)

    def test_iowait_counts_as_idle(self):
        first = CpuTimes()
        second = CpuTimes(user=25, idle=50, iowait=25)
        assert cpu_usage_between(first, second) == pytest.approx(25.0)

    @pytest.mark.parametrize(
        "times",
        [CpuTimes(), CpuTimes(user=5, idle=10), CpuTimes(1, 2, 3, 4, 5, 6, 7)],
    )
    def test_zero_total_delta_is_zero(self, times):
        """No ticks elapsed means 0%, never a division by zero."""
        assert cpu_usage_between(times, times) == 0.0

    def test_counter_reset_is_zero(self):
        assert cpu_usage_between(CpuTimes(user=500, idle=500), CpuTimes(user=1, idle=1)) == 0.0


class TestHostSampler:
    """Tests for HostSampler."""

    def make_sampler(self, proc: Path, sleep=None, **kwargs) -> HostSampler:
        return HostSampler(
            proc_root=proc,
            disk_path=proc,
            sleep=sleep or (lambda _s: None),
            cpu_count=kwargs.pop("cpu_count", 4),
            rng=kwargs.pop("rng", random.Random(0)),
            **kwargs,
        )

    def test_cpu_from_two_snapshots(self, tmp_path):
        """The injected sleep advances the counters between reads."""
        proc = write_proc(tmp_path / "proc", stat=cpu_line(100, 0, 100, 800, 0, 0, 0))
        sleeps = []

        def advance(seconds):
            sleeps.append(seconds)
            (proc / "stat").write_text(cpu_line(160, 0, 140, 880, 20, 0, 0))

        sampler = self.make_sampler(proc, sleep=advance, cpu_interval_seconds=1.0)
        # total delta 200, idle+iowait delta 100 -> 50%
        assert sampler.measure_cpu_percent() == pytest.approx(50.0)
        assert sleeps == [1.0]

    def test_cpu_fallback_to_load_average(self, tmp_path, caplog):
        proc = write_proc(tmp_path / "proc", stat=None)
        sampler = self.make_sampler(proc, cpu_count=2)

        with caplog.at_level(logging.WARNING):
            value = sampler.measure_cpu_percent(load_1=1.0)

        assert value == pytest.approx(50.0)
        assert "degraded CPU estimate" in caplog.text

    def test_cpu_fallback_is_capped(self, tmp_path):
        proc = write_proc(tmp_path / "proc", stat="garbage\n")
        sampler = self.make_sampler(proc, cpu_count=1)
        assert sampler.measure_cpu_percent(load_1=8.0) == 100.0

    def test_load_averages(self, tmp_path):
        proc = write_proc(tmp_path / "proc")
        assert self.make_sampler(proc).read_load_averages() == (0.5, 0.4, 0.3)

    def test_memory(self, tmp_path):
        proc = write_proc(tmp_path / "proc")
        total, free = self.make_sampler(proc).read_memory()
        assert total == 4096 * 1024
        assert free == 1024 * 1024

    def test_network_excludes_loopback(self, tmp_path):
        proc = write_proc(tmp_path / "proc")
        assert self.make_sampler(proc).read_network() == (1500, 2700)

    def test_network_placeholder_when_unreadable(self, tmp_path, caplog):
        proc = write_proc(tmp_path / "proc", with_net=False)
        sampler = self.make_sampler(proc)

        with caplog.at_level(logging.WARNING):
            net_in, net_out = sampler.read_network()

        assert 500_000 <= net_in <= 1_500_000
        assert 300_000 <= net_out <= 1_100_000
        assert "placeholder network counters" in caplog.text

    def test_sample(self, tmp_path):
        proc = write_proc(tmp_path / "proc", stat=cpu_line(100, 0, 100, 800, 0, 0, 0))
        sampler = self.make_sampler(proc)
        usage = DiskUsage(total=100 * MIB, used=30 * MIB, free=60 * MIB)

        with patch("container_telemetry.monitoring.host_sampler.shutil.disk_usage", return_value=usage):
            sample = sampler.sample()

        # Counters did not move between reads.
        assert sample.cpu_usage_percent == 0.0
        assert sample.cpu_load_1 == 0.5
        assert sample.ram_total_mb == pytest.approx(4.0)
        assert sample.ram_free_mb == pytest.approx(1.0)
        assert sample.ram_used_mb == pytest.approx(3.0)
        assert sample.ram_usage_percent == pytest.approx(75.0)
        # Total is used + available, not the filesystem size.
        assert sample.disk_used_mb == pytest.approx(30.0)
        assert sample.disk_free_mb == pytest.approx(60.0)
        assert sample.disk_total_mb == pytest.approx(90.0)
        assert sample.disk_usage_percent == pytest.approx(100 * 30 / 90)
        assert sample.network_in_bytes == 1500
        assert sample.network_out_bytes == 2700

    def test_disk_failure_reports_zero(self, tmp_path):
        proc = write_proc(tmp_path / "proc")
        sampler = self.make_sampler(proc)
        with patch(
            "container_telemetry.monitoring.host_sampler.shutil.disk_usage",
            side_effect=OSError("no such filesystem"),
        ):
            assert sampler.read_disk() == (0.0, 0.0)
