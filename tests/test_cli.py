"""Tests for the CLI commands."""

import json
from unittest.mock import patch

import pytest
from conftest import FakeRuntime, make_container
from typer.testing import CliRunner

from container_telemetry.cli import app
from container_telemetry.core.config import DATABASE_URL_ENV
from container_telemetry.core.schemas import utcnow
from container_telemetry.storage.store import TelemetryStore

runner = CliRunner()


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'telemetry.db'}"
    monkeypatch.setenv(DATABASE_URL_ENV, url)
    return url


class TestCli:
    """Tests for CLI commands."""

    def test_init_config(self, tmp_path):
        output = tmp_path / "collector.yaml"
        result = runner.invoke(app, ["init-config", "--output", str(output)])
        assert result.exit_code == 0
        assert "retention:" in output.read_text()

    def test_cleanup_dry_run(self, db_url):
        result = runner.invoke(app, ["cleanup", "--days", "30", "--dry-run"])
        assert result.exit_code == 0
        assert '"metricsDeleted": 0' in result.output
        assert '"dryRun": true' in result.output

    def test_cleanup_negative_days(self, db_url):
        result = runner.invoke(app, ["cleanup", "--days", "-1"])
        assert result.exit_code == 1

    def test_ingest_scan_and_score(self, db_url, tmp_path):
        store = TelemetryStore.from_url(db_url)
        store.upsert_container(make_container("abc123"))
        store.dispose()

        result_file = tmp_path / "trivy.json"
        result_file.write_text(
            json.dumps(
                {
                    "vulnerabilities": [
                        {"id": "CVE-1", "severity": "HIGH", "package": "nginx", "description": "overflow"},
                        {"id": "CVE-2", "severity": "LOW", "package": "zlib", "description": "minor"},
                    ]
                }
            )
        )

        result = runner.invoke(app, ["ingest-scan", "abc123", "trivy", str(result_file)])
        assert result.exit_code == 0
        assert "vulnerability detected in nginx" in result.output

        score = runner.invoke(app, ["score", "--container", "abc123"])
        assert score.exit_code == 0
        assert "Security score: 95" in score.output

    def test_ingest_scan_unknown_container(self, db_url, tmp_path):
        result_file = tmp_path / "r.json"
        result_file.write_text("{}")
        result = runner.invoke(app, ["ingest-scan", "missing", "trivy", str(result_file)])
        assert result.exit_code == 1

    def test_resolve_unknown_alert(self, db_url):
        result = runner.invoke(app, ["resolve-alert", "99"])
        assert result.exit_code == 1

    def test_collect_logs_and_show(self, db_url):
        store = TelemetryStore.from_url(db_url)
        store.upsert_container(make_container("abc123"))
        store.dispose()

        runtime = FakeRuntime()
        runtime.log_output["abc123"] = {
            "stdout": f"{utcnow():%Y-%m-%dT%H:%M:%SZ} server [started]\n",
            "stderr": f"{utcnow():%Y-%m-%dT%H:%M:%SZ} ERROR disk full\n",
        }
        with patch("container_telemetry.cli.DockerRuntime", return_value=runtime):
            result = runner.invoke(app, ["collect-logs", "abc123"])

        assert result.exit_code == 0
        assert '"logsCollected": 2' in result.output

        shown = runner.invoke(app, ["logs", "abc123", "--level", "error"])
        assert shown.exit_code == 0
        assert "1 ERROR" in shown.output
        assert "disk full" in shown.output
        assert "server [started]" not in shown.output

        everything = runner.invoke(app, ["logs", "abc123"])
        assert "server [started]" in everything.output

    def test_collect_logs_unknown_container(self, db_url):
        with patch("container_telemetry.cli.DockerRuntime", return_value=FakeRuntime()):
            result = runner.invoke(app, ["collect-logs", "missing"])
        assert result.exit_code == 1

    def test_logs_bad_level(self, db_url):
        result = runner.invoke(app, ["logs", "abc123", "--level", "loud"])
        assert result.exit_code == 1
