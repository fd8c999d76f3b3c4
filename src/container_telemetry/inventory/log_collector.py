"""On-demand collection of container logs into the store."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from container_telemetry.core.constants import DEFAULT_LOG_LOOKBACK_DAYS
from container_telemetry.core.errors import NotFoundError
from container_telemetry.core.schemas import LogCollectionResult, LogEntry, utcnow
from container_telemetry.monitoring.base import BaseRuntime
from container_telemetry.monitoring.log_parser import parse_log_output
from container_telemetry.storage.store import TelemetryStore

logger = logging.getLogger(__name__)


class LogCollector:
    """Fetch a container's output from the runtime and store it line by line.

    The first fetch for a container reaches back ``lookback_days``. Later
    fetches start at the newest stored line, and lines at or before it are
    dropped so repeated collection does not store duplicates.
    """

    def __init__(
        self,
        runtime: BaseRuntime,
        store: TelemetryStore,
        lookback_days: int = DEFAULT_LOG_LOOKBACK_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if lookback_days < 0:
            raise ValueError(f"lookback_days must be >= 0, got {lookback_days}")
        self.runtime = runtime
        self.store = store
        self.lookback_days = lookback_days
        self._clock = clock

    def collect(self, runtime_id: str) -> LogCollectionResult:
        """Collect new log lines for one container.

        Raises:
            NotFoundError: If the container is not in the inventory
            RuntimeQueryError: If the runtime cannot return the logs
        """
        record = self.store.get_container_by_runtime_id(runtime_id)
        if record is None:
            raise NotFoundError(f"Container {runtime_id} not found")

        now = self._clock()
        latest = self.store.latest_log_timestamp(record.id)
        since = latest if latest is not None else now - timedelta(days=self.lookback_days)

        streams = self.runtime.logs(runtime_id, since)

        lines_read = 0
        entries: list[LogEntry] = []
        for source, text in streams.items():
            parsed = parse_log_output(text, source=source, now=now)
            lines_read += len(parsed)
            entries.extend(e for e in parsed if latest is None or e.timestamp > latest)

        stored = self.store.add_container_logs(record.id, entries) if entries else 0
        logger.info(f"Collected {stored} log lines for {runtime_id[:12]} ({lines_read} read)")
        return LogCollectionResult(
            runtime_id=runtime_id, since=since, lines_read=lines_read, logs_collected=stored
        )
