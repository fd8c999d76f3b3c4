"""Docker-backed container runtime.

Listing and log fetches use the Docker SDK (one `containers.list(all=True)`
call). Stats use the docker CLI's tabular `stats --no-stream` output, which is
what the stats parser understands.
"""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime
from typing import TYPE_CHECKING, Any

import docker
from docker.errors import DockerException

from container_telemetry.core.constants import DOCKER_STATS_FORMAT
from container_telemetry.core.errors import RuntimeQueryError
from container_telemetry.core.schemas import RuntimeContainer
from container_telemetry.monitoring.base import BaseRuntime
from container_telemetry.monitoring.log_parser import parse_timestamp

if TYPE_CHECKING:
    from docker.models.containers import Container

logger = logging.getLogger(__name__)


def format_ports(ports: dict[str, Any] | None) -> str | None:
    """Render the SDK's port mapping dict like `docker ps` does.

    {"80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}], "443/tcp": None}
    -> "0.0.0.0:8080->80/tcp, 443/tcp"
    """
    if not ports:
        return None

    rendered: list[str] = []
    for container_port, bindings in sorted(ports.items()):
        if not bindings:
            rendered.append(container_port)
            continue
        for binding in bindings:
            host_ip = binding.get("HostIp") or "0.0.0.0"
            host_port = binding.get("HostPort", "")
            rendered.append(f"{host_ip}:{host_port}->{container_port}")
    return ", ".join(rendered) if rendered else None


def parse_created(value: str | None) -> datetime | None:
    """Parse Docker's RFC 3339 creation timestamp (nanosecond precision)."""
    parsed = parse_timestamp(value)
    if parsed is None and value:
        logger.debug(f"Unparseable container creation time: {value!r}")
    return parsed


class DockerRuntime(BaseRuntime):
    """BaseRuntime implementation for the local Docker engine.

    Example:
        ```python
        runtime = DockerRuntime()
        if runtime.is_available():
            for container in runtime.list_containers():
                print(container.runtime_id, container.status)
        ```
    """

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        docker_binary: str = "docker",
        stats_timeout_seconds: float = 10.0,
    ) -> None:
        """Initialize the runtime adapter.

        Args:
            client: Docker SDK client (created from the environment on first use)
            docker_binary: docker CLI executable used for stats queries
            stats_timeout_seconds: Timeout for a single stats query
        """
        self._client = client
        self._docker_binary = docker_binary
        self._stats_timeout_seconds = stats_timeout_seconds

    @property
    def name(self) -> str:
        return "docker"

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise RuntimeQueryError(f"Could not connect to Docker: {e}") from e
        return self._client

    def is_available(self) -> bool:
        """Check if Docker is available."""
        try:
            self.client.ping()
            return True
        except Exception:
            return False

    def list_containers(self) -> list[RuntimeContainer]:
        """List all containers, running and stopped."""
        try:
            containers = self.client.containers.list(all=True, ignore_removed=True)
        except DockerException as e:
            raise RuntimeQueryError(f"Docker container list failed: {e}") from e

        return [self._to_runtime_container(c) for c in containers]

    def _to_runtime_container(self, container: Container) -> RuntimeContainer:
        attrs = container.attrs or {}
        config = attrs.get("Config") or {}
        state = attrs.get("State") or {}
        status_text = container.status or state.get("Status", "")

        # container.image would hit the API and fails if the image was removed.
        image = config.get("Image") or attrs.get("Image", "")

        return RuntimeContainer(
            runtime_id=container.id,
            name=container.name or "",
            image=image,
            status_text=status_text,
            ports=format_ports(container.ports),
            created_at=parse_created(attrs.get("Created")),
        )

    def stats_line(self, runtime_id: str) -> str:
        """Run `docker stats --no-stream` for one container and return stdout."""
        cmd = [
            self._docker_binary,
            "stats",
            "--no-stream",
            "--format",
            DOCKER_STATS_FORMAT,
            runtime_id,
        ]
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._stats_timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RuntimeQueryError(f"docker stats failed for {runtime_id[:12]}: {e}") from e

        if completed.returncode != 0:
            raise RuntimeQueryError(
                f"docker stats exited {completed.returncode} for {runtime_id[:12]}: "
                f"{completed.stderr.strip()}"
            )
        return completed.stdout

    def logs(self, runtime_id: str, since: datetime) -> dict[str, str]:
        """Fetch timestamped output written since ``since``, per stream.

        Returns:
            Mapping of stream name ("stdout", "stderr") to raw log text
        """
        try:
            container = self.client.containers.get(runtime_id)
            output: dict[str, str] = {}
            for stream in ("stdout", "stderr"):
                raw = container.logs(
                    stdout=stream == "stdout",
                    stderr=stream == "stderr",
                    timestamps=True,
                    since=since,
                )
                output[stream] = raw.decode("utf-8", errors="replace")
        except DockerException as e:
            raise RuntimeQueryError(f"docker logs failed for {runtime_id[:12]}: {e}") from e
        return output
