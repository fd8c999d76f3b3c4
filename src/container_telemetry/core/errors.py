"""Exception types raised by the telemetry collector."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for collector errors."""


class RuntimeQueryError(TelemetryError):
    """The container runtime could not be queried."""


class NotFoundError(TelemetryError):
    """A referenced container, alert or scan does not exist."""


class ScanStateError(TelemetryError):
    """A scan was asked to make a transition its current status forbids."""
