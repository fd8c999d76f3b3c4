"""Converges the persisted container inventory toward the runtime's view.

The runtime is the source of truth: observed containers are upserted by
runtime id and every persisted container the runtime no longer reports is
deleted. An empty observation never triggers deletes, since an empty list is
far more likely a failed query than an empty fleet.
"""

from __future__ import annotations

import logging

from container_telemetry.core.errors import RuntimeQueryError
from container_telemetry.core.schemas import (
    ContainerStatusChange,
    ReconcileResult,
    RuntimeContainer,
    StepError,
)
from container_telemetry.monitoring.base import BaseRuntime
from container_telemetry.storage.store import TelemetryStore

logger = logging.getLogger(__name__)


class InventoryReconciler:
    """Upsert/delete diffing of runtime containers against the store."""

    def __init__(self, runtime: BaseRuntime, store: TelemetryStore) -> None:
        self.runtime = runtime
        self.store = store

    def reconcile(self) -> ReconcileResult:
        """Run one reconciliation pass. Never raises.

        Returns:
            ReconcileResult with counts, status changes and step errors
        """
        result = ReconcileResult()

        try:
            observed = self.runtime.list_containers()
        except RuntimeQueryError as e:
            logger.warning(f"Container list from {self.runtime.name} failed: {e}")
            result.errors.append(StepError(step="reconcile:list", message=str(e)))
            return result
        except Exception as e:
            logger.exception(f"Unexpected error listing containers: {e}")
            result.errors.append(StepError(step="reconcile:list", message=str(e)))
            return result

        # Last observation wins if the runtime reports an id twice.
        by_id: dict[str, RuntimeContainer] = {c.runtime_id: c for c in observed}
        result.observed = len(by_id)

        for container in by_id.values():
            self._upsert(container, result)

        if not by_id:
            logger.info("Runtime reported no containers; skipping inventory deletes")
            result.deletion_skipped = True
            return result

        try:
            deleted = self.store.delete_containers_not_in(by_id.keys())
        except Exception as e:
            logger.error(f"Failed to delete stale containers: {e}")
            result.errors.append(StepError(step="reconcile:delete", message=str(e)))
            return result

        result.deleted = len(deleted)
        if deleted:
            logger.info(f"Removed {len(deleted)} container(s) no longer reported by the runtime")

        logger.debug(
            f"Reconciled {result.observed} containers: {result.created} created, "
            f"{result.updated} updated, {result.deleted} deleted"
        )
        return result

    def _upsert(self, container: RuntimeContainer, result: ReconcileResult) -> None:
        try:
            record, created, previous = self.store.upsert_container(container)
        except Exception as e:
            logger.warning(f"Failed to upsert container {container.runtime_id[:12]}: {e}")
            result.errors.append(
                StepError(step=f"reconcile:{container.runtime_id[:12]}", message=str(e))
            )
            return

        if created:
            result.created += 1
        else:
            result.updated += 1

        if created or previous != container.status:
            result.status_changes.append(
                ContainerStatusChange(
                    runtime_id=record.runtime_id,
                    name=record.name,
                    image=record.image,
                    status=container.status,
                    previous_status=previous,
                )
            )
