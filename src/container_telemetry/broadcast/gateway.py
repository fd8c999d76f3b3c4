"""Best-effort fan-out of persisted telemetry to live subscribers.

Publishing never raises. Persistence has already succeeded by the time a
payload reaches the gateway, so a failed publish only delays live updates.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from container_telemetry.core.constants import CONTAINER_CHANNEL_PREFIX

logger = logging.getLogger(__name__)


def container_channel(runtime_id: str) -> str:
    """Channel key for container-scoped data."""
    return f"{CONTAINER_CHANNEL_PREFIX}{runtime_id}"


class Broadcaster(ABC):
    """Publish port injected into the orchestrator and the alert deriver."""

    @abstractmethod
    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        """Publish a JSON-serializable payload on a channel."""

    def close(self) -> None:
        """Release any held resources."""


class NullBroadcaster(Broadcaster):
    """Discards every payload. Used when no endpoint is configured."""

    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        logger.debug(f"Broadcast disabled, dropping payload for {channel}")


class HttpBroadcaster(Broadcaster):
    """POSTs ``{"channel": ..., "payload": ...}`` to a fan-out endpoint.

    Example:
        ```python
        broadcaster = HttpBroadcaster("http://localhost:3001/broadcast", timeout=2.0)
        broadcaster.publish("alerts", alert.to_dict())
        ```
    """

    def __init__(self, url: str, timeout: float = 2.0, client: httpx.Client | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        try:
            response = self._client.post(self.url, json={"channel": channel, "payload": payload})
            response.raise_for_status()
        except httpx.ConnectError:
            logger.warning(f"Broadcast endpoint unreachable at {self.url}; dropped {channel} update")
        except httpx.TimeoutException:
            logger.warning(f"Broadcast to {channel} timed out after {self.timeout}s")
        except httpx.HTTPStatusError as e:
            logger.warning(f"Broadcast to {channel} rejected: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Broadcast to {channel} failed: {e}")

    def close(self) -> None:
        self._client.close()


def notify(broadcaster: Broadcaster | None, channel: str, payload: dict[str, Any]) -> bool:
    """Publish and swallow any failure.

    Returns:
        True if the broadcaster accepted the call without raising
    """
    if broadcaster is None:
        return False
    try:
        broadcaster.publish(channel, payload)
        return True
    except Exception as e:
        logger.warning(f"Broadcast to {channel} failed: {e}")
        return False


def build_broadcaster(url: str | None, timeout: float = 2.0) -> Broadcaster:
    """HttpBroadcaster for a configured URL, NullBroadcaster otherwise."""
    if not url:
        return NullBroadcaster()
    return HttpBroadcaster(url, timeout=timeout)
