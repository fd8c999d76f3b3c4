"""Tests for the Docker runtime adapter."""

import subprocess
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import APIError, NotFound

from container_telemetry.core.constants import DOCKER_STATS_FORMAT
from container_telemetry.core.errors import RuntimeQueryError
from container_telemetry.core.schemas import ContainerStatus
from container_telemetry.runners.docker_runtime import DockerRuntime, format_ports, parse_created


def mock_container(cid, name, status, image="nginx:latest", ports=None, created="2024-05-01T10:00:00.123456789Z"):
    container = MagicMock()
    container.id = cid
    container.name = name
    container.status = status
    container.ports = ports or {}
    container.attrs = {"Config": {"Image": image}, "Created": created, "State": {"Status": status}}
    return container


class TestFormatPorts:
    """Tests for format_ports."""

    def test_bound_and_unbound(self):
        ports = {
            "80/tcp": [{"HostIp": "0.0.0.0", "HostPort": "8080"}],
            "443/tcp": None,
        }
        assert format_ports(ports) == "443/tcp, 0.0.0.0:8080->80/tcp"

    def test_empty(self):
        assert format_ports({}) is None
        assert format_ports(None) is None


class TestParseCreated:
    """Tests for parse_created."""

    def test_nanosecond_precision(self):
        assert parse_created("2024-05-01T10:00:00.123456789Z") == datetime(
            2024, 5, 1, 10, 0, 0, 123456, tzinfo=UTC
        )

    def test_invalid(self):
        assert parse_created("yesterday") is None
        assert parse_created(None) is None


class TestDockerRuntime:
    """Tests for DockerRuntime."""

    def test_list_containers(self):
        client = MagicMock()
        client.containers.list.return_value = [
            mock_container("a" * 64, "web", "running", ports={"80/tcp": [{"HostIp": "", "HostPort": "80"}]}),
            mock_container("b" * 64, "db", "exited", image="postgres:16"),
        ]
        runtime = DockerRuntime(client=client)

        containers = runtime.list_containers()

        client.containers.list.assert_called_once_with(all=True, ignore_removed=True)
        assert [c.runtime_id for c in containers] == ["a" * 64, "b" * 64]
        assert containers[0].status == ContainerStatus.RUNNING
        assert containers[0].ports == "0.0.0.0:80->80/tcp"
        assert containers[1].status == ContainerStatus.STOPPED
        assert containers[1].image == "postgres:16"
        assert containers[1].created_at is not None

    def test_list_failure_raises_runtime_query_error(self):
        client = MagicMock()
        client.containers.list.side_effect = APIError("daemon unavailable")
        with pytest.raises(RuntimeQueryError):
            DockerRuntime(client=client).list_containers()

    def test_is_available(self):
        client = MagicMock()
        assert DockerRuntime(client=client).is_available() is True
        client.ping.side_effect = APIError("down")
        assert DockerRuntime(client=client).is_available() is False

    @patch("container_telemetry.runners.docker_runtime.subprocess.run")
    def test_stats_line(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=0, stdout="abc 0.50% 1MiB / 2MiB 50.00% 0B / 0B 0B / 0B\n", stderr=""
        )
        runtime = DockerRuntime(client=MagicMock(), docker_binary="/usr/bin/docker", stats_timeout_seconds=5)

        output = runtime.stats_line("abc")

        assert output.startswith("abc 0.50%")
        cmd = mock_run.call_args.args[0]
        assert cmd == ["/usr/bin/docker", "stats", "--no-stream", "--format", DOCKER_STATS_FORMAT, "abc"]
        assert mock_run.call_args.kwargs["timeout"] == 5

    @patch("container_telemetry.runners.docker_runtime.subprocess.run")
    def test_stats_nonzero_exit(self, mock_run):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="", stderr="No such container: abc"
        )
        with pytest.raises(RuntimeQueryError, match="No such container"):
            DockerRuntime(client=MagicMock()).stats_line("abc")

    @patch("container_telemetry.runners.docker_runtime.subprocess.run")
    def test_stats_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="docker", timeout=10)
        with pytest.raises(RuntimeQueryError):
            DockerRuntime(client=MagicMock()).stats_line("abc")

    def test_logs_per_stream(self):
        client = MagicMock()
        container = client.containers.get.return_value
        container.logs.side_effect = [
            b"2024-05-01T10:00:00.000000001Z listening\n",
            b"2024-05-01T10:00:01Z ERROR boom \xff\n",
        ]
        since = datetime(2024, 5, 1, tzinfo=UTC)

        output = DockerRuntime(client=client).logs("abc", since)

        client.containers.get.assert_called_once_with("abc")
        assert output["stdout"] == "2024-05-01T10:00:00.000000001Z listening\n"
        assert output["stderr"].startswith("2024-05-01T10:00:01Z ERROR boom")
        first, second = container.logs.call_args_list
        assert first.kwargs == {"stdout": True, "stderr": False, "timestamps": True, "since": since}
        assert second.kwargs == {"stdout": False, "stderr": True, "timestamps": True, "since": since}

    def test_logs_missing_container(self):
        client = MagicMock()
        client.containers.get.side_effect = NotFound("No such container: abc")
        with pytest.raises(RuntimeQueryError, match="docker logs failed"):
            DockerRuntime(client=client).logs("abc", datetime(2024, 5, 1, tzinfo=UTC))
