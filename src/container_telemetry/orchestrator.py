"""Collection cycle orchestration and the periodic collection loop.

One cycle:
1. Reconcile the container inventory against the runtime
2. Sample the host (in a worker thread, since CPU sampling blocks)
3. Sample every running container, one at a time with a short delay
4. Persist the host sample once its worker finishes
5. Run the retention sweep when its interval has elapsed

Every sub-step catches its own failures and records them as StepErrors on the
CycleReport; a bad cycle never stops the loop.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from container_telemetry.broadcast.gateway import Broadcaster, build_broadcaster, container_channel, notify
from container_telemetry.core.constants import (
    DEFAULT_COLLECTION_INTERVAL_SECONDS,
    DEFAULT_CONTAINER_DELAY_MS,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_SWEEP_INTERVAL_HOURS,
    STATUS_CHANGE_CHANNEL,
    SYSTEM_CHANNEL,
)
from container_telemetry.core.errors import RuntimeQueryError
from container_telemetry.core.schemas import (
    CollectorConfig,
    ContainerStatus,
    CycleReport,
    HostSample,
    StepError,
    utcnow,
)
from container_telemetry.inventory.reconciler import InventoryReconciler
from container_telemetry.monitoring.base import BaseRuntime
from container_telemetry.monitoring.host_sampler import HostSampler
from container_telemetry.monitoring.stats_parser import parse_stats_output
from container_telemetry.storage.models import ContainerRecord
from container_telemetry.storage.retention import RetentionSweeper
from container_telemetry.storage.store import TelemetryStore

logger = logging.getLogger(__name__)


class CollectionOrchestrator:
    """Drives collection cycles, once or on a fixed interval.

    Example:
        ```python
        orchestrator = CollectionOrchestrator(runtime, store, HostSampler())
        report = orchestrator.run_cycle()
        print(report.container_samples, report.errors)
        ```
    """

    def __init__(
        self,
        runtime: BaseRuntime,
        store: TelemetryStore,
        host_sampler: HostSampler,
        broadcaster: Broadcaster | None = None,
        sweeper: RetentionSweeper | None = None,
        interval_seconds: float = DEFAULT_COLLECTION_INTERVAL_SECONDS,
        container_delay_ms: int = DEFAULT_CONTAINER_DELAY_MS,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_HOURS * 3600,
        sleep: Callable[[float], object] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            runtime: Container runtime to query
            store: Telemetry store
            host_sampler: Host metric sampler
            broadcaster: Live fan-out port (None disables broadcasting)
            sweeper: Retention sweeper (None disables sweeping)
            interval_seconds: Time between cycle starts
            container_delay_ms: Pause between per-container stats queries
            retention_days: Horizon passed to the sweeper
            sweep_interval_seconds: Minimum time between sweeps
            sleep: Delay function between containers (defaults to an
                interruptible wait on the stop event)
            clock: Monotonic clock used for scheduling
        """
        self.runtime = runtime
        self.store = store
        self.host_sampler = host_sampler
        self.broadcaster = broadcaster
        self.sweeper = sweeper
        self.interval_seconds = interval_seconds
        self.container_delay_seconds = container_delay_ms / 1000.0
        self.retention_days = retention_days
        self.sweep_interval_seconds = sweep_interval_seconds

        self.reconciler = InventoryReconciler(runtime, store)

        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._sleep = sleep or self._stop_event.wait
        self._clock = clock
        self._last_sweep = clock()
        self.cycles_run = 0

    @classmethod
    def from_config(
        cls,
        config: CollectorConfig,
        runtime: BaseRuntime,
        store: TelemetryStore,
        broadcaster: Broadcaster | None = None,
    ) -> CollectionOrchestrator:
        sampler = HostSampler(
            proc_root=config.proc_root,
            disk_path=config.disk_path,
            cpu_interval_seconds=config.cpu_sample_interval_seconds,
        )
        sweeper = RetentionSweeper(store) if config.retention.enabled else None
        if broadcaster is None:
            broadcaster = build_broadcaster(config.broadcast.url, config.broadcast.timeout_seconds)
        return cls(
            runtime=runtime,
            store=store,
            host_sampler=sampler,
            broadcaster=broadcaster,
            sweeper=sweeper,
            interval_seconds=config.collection_interval_seconds,
            container_delay_ms=config.container_delay_ms,
            retention_days=config.retention.days,
            sweep_interval_seconds=config.retention.sweep_interval_hours * 3600,
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Single cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleReport:
        """Run one full collection cycle. Safe to call repeatedly; never raises.

        Concurrent callers are serialized so cycles never overlap.
        """
        with self._cycle_lock:
            report = CycleReport()

            reconcile = self.reconciler.reconcile()
            report.reconcile = reconcile
            report.errors.extend(reconcile.errors)
            for change in reconcile.status_changes:
                notify(self.broadcaster, STATUS_CHANGE_CHANNEL, change.model_dump(mode="json"))

            with ThreadPoolExecutor(max_workers=1, thread_name_prefix="host-sampler") as pool:
                host_future = pool.submit(self.host_sampler.sample)
                self._sample_containers(report)
                self._store_host_sample(host_future, report)

            if self._sweep_due():
                self._run_sweep(report)

            report.finished_at = utcnow()
            self.cycles_run += 1

        if report.success:
            logger.info(
                f"Cycle complete in {report.duration_seconds:.2f}s: "
                f"{report.container_samples} container samples, "
                f"host sample {'stored' if report.host_sample_stored else 'missing'}"
            )
        else:
            failed = ", ".join(e.step for e in report.errors)
            logger.warning(f"Cycle finished with {len(report.errors)} failed step(s): {failed}")
        return report

    def _sample_containers(self, report: CycleReport) -> None:
        try:
            running = self.store.list_containers(status=ContainerStatus.RUNNING)
        except Exception as e:
            logger.error(f"Could not load running containers: {e}")
            report.errors.append(StepError(step="containers:list", message=str(e)))
            return

        for index, record in enumerate(running):
            if self._stop_event.is_set():
                logger.info("Stop requested; skipping remaining containers")
                break
            if index > 0 and self.container_delay_seconds > 0:
                self._sleep(self.container_delay_seconds)
            self._sample_container(record, report)

    def _sample_container(self, record: ContainerRecord, report: CycleReport) -> None:
        step = f"container:{record.runtime_id[:12]}"
        try:
            output = self.runtime.stats_line(record.runtime_id)
        except RuntimeQueryError as e:
            logger.warning(f"Stats query failed for {record.name or record.runtime_id[:12]}: {e}")
            report.errors.append(StepError(step=step, message=str(e)))
            return
        except Exception as e:
            logger.exception(f"Unexpected error querying stats for {record.runtime_id[:12]}")
            report.errors.append(StepError(step=step, message=str(e)))
            return

        stats = parse_stats_output(output)
        if stats is None:
            report.containers_without_stats += 1
            return

        try:
            metric = self.store.add_container_metric(record.id, stats)
        except Exception as e:
            logger.error(f"Failed to store sample for {record.runtime_id[:12]}: {e}")
            report.errors.append(StepError(step=f"{step}:persist", message=str(e)))
            return

        report.container_samples += 1
        payload = metric.to_dict()
        payload["runtime_id"] = record.runtime_id
        notify(self.broadcaster, container_channel(record.runtime_id), payload)

    def _store_host_sample(self, future: Future[HostSample], report: CycleReport) -> None:
        try:
            sample = future.result()
        except Exception as e:
            logger.error(f"Host sampling failed: {e}")
            report.errors.append(StepError(step="host:sample", message=str(e)))
            return

        try:
            metric = self.store.add_system_metric(sample)
        except Exception as e:
            logger.error(f"Failed to store host sample: {e}")
            report.errors.append(StepError(step="host:persist", message=str(e)))
            return

        report.host_sample_stored = True
        notify(self.broadcaster, SYSTEM_CHANNEL, metric.to_dict())

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _sweep_due(self) -> bool:
        if self.sweeper is None:
            return False
        return self._clock() - self._last_sweep >= self.sweep_interval_seconds

    def _run_sweep(self, report: CycleReport) -> None:
        assert self.sweeper is not None
        self._last_sweep = self._clock()
        try:
            report.sweep = self.sweeper.sweep(days=self.retention_days)
        except Exception as e:
            logger.error(f"Retention sweep failed: {e}")
            report.errors.append(StepError(step="retention", message=str(e)))
            return
        for message in report.sweep.errors:
            report.errors.append(StepError(step="retention", message=message))

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self) -> None:
        """Run cycles until stop is requested: one eagerly, then every interval."""
        logger.info(
            f"Collector started: every {self.interval_seconds:g}s via {self.runtime.name}"
        )
        while not self._stop_event.is_set():
            started = self._clock()
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Collection cycle crashed; continuing")
            remaining = self.interval_seconds - (self._clock() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)
        logger.info("Collector stopped")

    def start(self) -> None:
        """Start the collection loop in a background thread."""
        if self.is_running:
            logger.warning("CollectionOrchestrator already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="collector", daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        """Ask the loop to exit after the current step. Safe from signal handlers."""
        self._stop_event.set()

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the loop and wait for the in-flight cycle to finish."""
        self.request_stop()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Collector thread did not exit within {timeout}s")
            self._thread = None
