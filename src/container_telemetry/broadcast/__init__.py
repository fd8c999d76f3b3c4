"""Broadcast module - live fan-out port and its implementations."""

from __future__ import annotations

from container_telemetry.broadcast.gateway import (
    Broadcaster,
    HttpBroadcaster,
    NullBroadcaster,
    build_broadcaster,
    container_channel,
    notify,
)

__all__ = [
    "Broadcaster",
    "HttpBroadcaster",
    "NullBroadcaster",
    "build_broadcaster",
    "container_channel",
    "notify",
]
