"""Inventory module - runtime-to-store reconciliation and log collection."""

from __future__ import annotations

from container_telemetry.inventory.log_collector import LogCollector
from container_telemetry.inventory.reconciler import InventoryReconciler

__all__ = ["InventoryReconciler", "LogCollector"]
