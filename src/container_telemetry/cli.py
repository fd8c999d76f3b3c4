"""CLI for the container telemetry collector.

Provides a rich command-line interface using Typer for:
- Running collection cycles (once or on a schedule)
- Retention sweeps and their statistics
- Reports over recent samples
- Ingesting scan results and resolving alerts
- Collecting and browsing container logs
"""

from __future__ import annotations

import json
import signal
import threading
from datetime import timedelta
from pathlib import Path
from types import FrameType

import pandas as pd
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from container_telemetry.broadcast.gateway import Broadcaster, build_broadcaster
from container_telemetry.core.config import SAMPLE_CONFIG, load_config
from container_telemetry.core.constants import DEFAULT_LOG_LOOKBACK_DAYS, DEFAULT_LOG_QUERY_LIMIT
from container_telemetry.core.errors import NotFoundError, TelemetryError
from container_telemetry.core.schemas import CollectorConfig, CycleReport, LogLevel, Severity, utcnow
from container_telemetry.inventory.log_collector import LogCollector
from container_telemetry.orchestrator import CollectionOrchestrator
from container_telemetry.runners.docker_runtime import DockerRuntime
from container_telemetry.security.alerts import AlertDeriver, ScanService, security_score_for
from container_telemetry.storage.retention import RetentionSweeper
from container_telemetry.storage.store import TelemetryStore
from container_telemetry.utils.logging import setup_logging

app = typer.Typer(
    name="container-telemetry",
    help="Container telemetry collector",
    add_completion=False,
)

console = Console()


def _load(config_path: Path | None) -> CollectorConfig:
    try:
        return load_config(config_path)
    except Exception as e:
        console.print(f"[bold red]Error loading config: {e}[/]")
        raise typer.Exit(1) from e


def _open_store(config: CollectorConfig) -> TelemetryStore:
    try:
        return TelemetryStore.from_url(config.database_url)
    except Exception as e:
        console.print(f"[bold red]Could not open database {config.database_url}: {e}[/]")
        raise typer.Exit(1) from e


def _broadcaster(config: CollectorConfig) -> Broadcaster:
    return build_broadcaster(config.broadcast.url, config.broadcast.timeout_seconds)


def _install_stop_handlers(stop: threading.Event | CollectionOrchestrator) -> None:
    """Route SIGINT/SIGTERM to a clean shutdown."""

    def _handler(signum: int, _frame: FrameType | None) -> None:
        console.print(f"[bold yellow]Received {signal.Signals(signum).name}, shutting down...[/]")
        if isinstance(stop, CollectionOrchestrator):
            stop.request_stop()
        else:
            stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


@app.command()
def collect(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
    schedule: bool = typer.Option(
        False, "--schedule/--once", help="Run on the configured interval instead of once"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Write logs to file in addition to console"
    ),
    json_logs: bool = typer.Option(
        False, "--json-logs", help="Output logs in JSON format (for programmatic parsing)"
    ),
) -> None:
    """Collect container and host telemetry."""
    setup_logging(
        level=log_level, log_file=log_file, json_format=json_logs, rich_console=not json_logs
    )
    collector_config = _load(config)
    store = _open_store(collector_config)
    broadcaster = _broadcaster(collector_config)
    runtime = DockerRuntime(
        docker_binary=collector_config.runtime.docker_binary,
        stats_timeout_seconds=collector_config.runtime.stats_timeout_seconds,
    )
    orchestrator = CollectionOrchestrator.from_config(
        collector_config, runtime=runtime, store=store, broadcaster=broadcaster
    )
    if not runtime.is_available():
        console.print(
            "[bold yellow]Docker is not reachable; inventory steps will report errors[/]"
        )

    try:
        if schedule:
            _install_stop_handlers(orchestrator)
            console.print(
                f"[bold blue]Collecting every {collector_config.collection_interval_seconds:g}s "
                f"(Ctrl+C to stop)[/]"
            )
            orchestrator.run_forever()
            return

        report = orchestrator.run_cycle()
        _show_cycle_report(report)
        if not report.success:
            raise typer.Exit(1)
    finally:
        broadcaster.close()
        store.dispose()


@app.command()
def cleanup(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
    days: int | None = typer.Option(None, "--days", "-d", help="Retention horizon (overrides config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Count eligible rows without deleting"),
    schedule: bool = typer.Option(
        False, "--schedule", help="Sweep repeatedly on the configured sweep interval"
    ),
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
) -> None:
    """Delete metrics, resolved alerts and completed scans past the retention horizon."""
    setup_logging(level=log_level)
    collector_config = _load(config)
    horizon = days if days is not None else collector_config.retention.days
    if horizon < 0:
        console.print("[bold red]Error:[/] --days must be >= 0")
        raise typer.Exit(1)

    store = _open_store(collector_config)
    sweeper = RetentionSweeper(store)

    try:
        if not schedule:
            result = sweeper.sweep(days=horizon, dry_run=dry_run)
            console.print(json.dumps(result.to_response(), indent=2, default=str))
            if not result.success:
                raise typer.Exit(1)
            return

        stop = threading.Event()
        _install_stop_handlers(stop)
        interval = collector_config.retention.sweep_interval_hours * 3600
        console.print(
            f"[bold blue]Sweeping every {collector_config.retention.sweep_interval_hours:g}h "
            f"(Ctrl+C to stop)[/]"
        )
        while not stop.is_set():
            result = sweeper.sweep(days=horizon, dry_run=dry_run)
            console.print(json.dumps(result.to_response(), default=str))
            stop.wait(interval)
    finally:
        store.dispose()


@app.command("cleanup-stats")
def cleanup_stats(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
    days: int | None = typer.Option(None, "--days", "-d", help="Retention horizon (overrides config)"),
) -> None:
    """Show row totals and how many rows a sweep would delete."""
    collector_config = _load(config)
    horizon = days if days is not None else collector_config.retention.days
    store = _open_store(collector_config)
    try:
        stats = RetentionSweeper(store).stats(days=horizon)
    except ValueError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        store.dispose()

    table = Table(title=f"Retention ({horizon} days, cutoff {stats.cutoff:%Y-%m-%d %H:%M})")
    table.add_column("Class", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Eligible", justify="right", style="yellow")
    table.add_row("Container metrics", str(stats.total_metrics), str(stats.eligible_metrics))
    table.add_row("Alerts (resolved)", str(stats.total_alerts), str(stats.eligible_alerts))
    table.add_row("Scans (completed)", str(stats.total_scans), str(stats.eligible_scans))
    table.add_row("[bold]Total[/]", "", f"[bold]{stats.total_eligible}[/]")
    console.print(table)


@app.command()
def report(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
    kind: str = typer.Option("container", "--kind", "-k", help="Samples to show: container, system"),
    container: str | None = typer.Option(None, "--container", help="Runtime id to filter on"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows"),
    output_format: str = typer.Option(
        "table", "--format", "-f", help="Output format: table, json, csv"
    ),
) -> None:
    """Show the most recent samples."""
    collector_config = _load(config)
    store = _open_store(collector_config)
    try:
        df = store.metrics_frame(kind=kind, limit=limit, runtime_id=container)
    except ValueError as e:
        console.print(f"[bold red]{e}[/]")
        raise typer.Exit(1) from e
    finally:
        store.dispose()

    if df.empty:
        console.print("[bold yellow]No samples recorded yet[/]")
        return

    if output_format == "json":
        console.print(df.to_json(orient="records", indent=2))
    elif output_format == "csv":
        console.print(df.to_csv(index=False))
    else:
        _show_frame(df, title=f"Recent {kind} samples")


@app.command("ingest-scan")
def ingest_scan(
    container: str = typer.Argument(..., help="Runtime id of the scanned container"),
    scan_type: str = typer.Argument(..., help="Scanner name, e.g. trivy or yara"),
    result_file: Path = typer.Argument(..., help="JSON file with the scanner's result"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
    duration_ms: int | None = typer.Option(None, "--duration-ms", help="Scan duration"),
    summary: str | None = typer.Option(None, "--summary", help="Summary (generated if omitted)"),
) -> None:
    """Record a completed scan and derive alerts from its HIGH/CRITICAL findings."""
    collector_config = _load(config)
    store = _open_store(collector_config)
    broadcaster = _broadcaster(collector_config)
    service = ScanService(store, AlertDeriver(store, broadcaster), broadcaster)

    try:
        record = store.get_container_by_runtime_id(container)
        if record is None:
            console.print(f"[bold red]Unknown container: {container}[/]")
            raise typer.Exit(1)

        scan = service.start_scan(record.id, scan_type)
        try:
            result = json.loads(result_file.read_text())
            if not isinstance(result, dict):
                raise ValueError("scan result must be a JSON object")
        except (OSError, ValueError) as e:
            service.fail_scan(scan.id, summary=f"Unreadable scan result: {e}")
            console.print(f"[bold red]Scan {scan.id} failed: {e}[/]")
            raise typer.Exit(1) from e

        scan, alerts = service.complete_scan(
            scan.id, result, summary=summary, duration_ms=duration_ms
        )
        console.print(f"[bold green]Scan {scan.id} completed:[/] {scan.summary}")
        for alert in alerts:
            console.print(f"  [{_severity_style(alert.severity)}]{alert.severity}[/] {alert.message}")
    except TelemetryError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        broadcaster.close()
        store.dispose()


@app.command("resolve-alert")
def resolve_alert(
    alert_id: int = typer.Argument(..., help="Alert id"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
) -> None:
    """Mark an alert as resolved."""
    collector_config = _load(config)
    store = _open_store(collector_config)
    broadcaster = _broadcaster(collector_config)
    try:
        alert = AlertDeriver(store, broadcaster).resolve(alert_id)
    except NotFoundError as e:
        console.print(f"[bold red]{e}[/]")
        raise typer.Exit(1) from None
    finally:
        broadcaster.close()
        store.dispose()
    console.print(f"[bold green]Resolved alert {alert.id}:[/] {alert.message}")


@app.command()
def score(
    container: str | None = typer.Option(None, "--container", help="Runtime id (all alerts if omitted)"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
) -> None:
    """Compute the security score from unresolved alerts."""
    collector_config = _load(config)
    store = _open_store(collector_config)
    try:
        container_id: int | None = None
        if container is not None:
            record = store.get_container_by_runtime_id(container)
            if record is None:
                console.print(f"[bold red]Unknown container: {container}[/]")
                raise typer.Exit(1)
            container_id = record.id
        counts = store.count_unresolved_alerts(container_id)
        value = security_score_for(store, container_id)
    finally:
        store.dispose()

    style = "green" if value >= 80 else "yellow" if value >= 50 else "red"
    console.print(f"Security score: [bold {style}]{value}[/]")
    console.print(
        f"Unresolved: {counts[Severity.CRITICAL]} critical, {counts[Severity.HIGH]} high, "
        f"{counts[Severity.MEDIUM]} medium, {counts[Severity.LOW]} low"
    )


@app.command("collect-logs")
def collect_logs(
    container: str = typer.Argument(..., help="Runtime id of the container"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
    days: int = typer.Option(
        DEFAULT_LOG_LOOKBACK_DAYS, "--days", "-d", help="Lookback for the first collection"
    ),
) -> None:
    """Fetch a container's logs from Docker and store them."""
    collector_config = _load(config)
    store = _open_store(collector_config)
    runtime = DockerRuntime(
        docker_binary=collector_config.runtime.docker_binary,
        stats_timeout_seconds=collector_config.runtime.stats_timeout_seconds,
    )
    try:
        result = LogCollector(runtime, store, lookback_days=days).collect(container)
    except (TelemetryError, ValueError) as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        store.dispose()

    console.print(
        json.dumps(
            {"message": result.message, "logsCollected": result.logs_collected},
            indent=2,
        )
    )


@app.command()
def logs(
    container: str = typer.Argument(..., help="Runtime id of the container"),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Collector configuration file (YAML/JSON)"
    ),
    level: str | None = typer.Option(None, "--level", help="Only this level: ERROR, WARN, INFO, DEBUG"),
    source: str | None = typer.Option(None, "--source", help="Only this stream: stdout, stderr"),
    days: int = typer.Option(DEFAULT_LOG_LOOKBACK_DAYS, "--days", "-d", help="How far back to look"),
    limit: int = typer.Option(DEFAULT_LOG_QUERY_LIMIT, "--limit", "-n", help="Maximum rows"),
    summary: bool = typer.Option(False, "--summary", help="Only show counts per level"),
) -> None:
    """Show stored log lines for a container."""
    log_level: LogLevel | None = None
    if level is not None:
        try:
            log_level = LogLevel(level.upper())
        except ValueError:
            console.print(f"[bold red]Unknown log level: {level}[/]")
            raise typer.Exit(1) from None

    collector_config = _load(config)
    store = _open_store(collector_config)
    try:
        record = store.get_container_by_runtime_id(container)
        if record is None:
            console.print(f"[bold red]Unknown container: {container}[/]")
            raise typer.Exit(1)
        since = utcnow() - timedelta(days=days)
        counts = store.count_logs_by_level(record.id, since=since)
        rows = []
        if not summary:
            rows = store.list_container_logs(
                record.id, level=log_level, source=source, since=since, limit=limit
            )
    finally:
        store.dispose()

    console.print(
        f"[bold]{record.name or container}[/]: "
        + ", ".join(f"{count} {lvl.value}" for lvl, count in counts.items())
    )
    if summary:
        return
    if not rows:
        console.print("[bold yellow]No log lines stored for this window[/]")
        return
    for row in rows:
        style = _log_level_style(row.log_level)
        console.print(
            f"{row.timestamp:%Y-%m-%d %H:%M:%S} [{style}]{row.log_level:<5}[/] "
            f"[dim]{row.source or '-'}[/] {escape(row.message)}",
            highlight=False,
        )


@app.command()
def init_config(
    output: Path = typer.Option(
        Path("collector.yaml"), "--output", "-o", help="Output configuration file"
    ),
) -> None:
    """Generate a sample configuration file."""
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(SAMPLE_CONFIG)
    console.print(f"[bold green]Sample configuration written to {output}[/]")


def _severity_style(severity: str) -> str:
    return {
        "CRITICAL": "bold red",
        "HIGH": "red",
        "MEDIUM": "yellow",
    }.get(severity, "white")


def _log_level_style(level: str) -> str:
    return {"ERROR": "red", "WARN": "yellow", "DEBUG": "dim"}.get(level, "white")


def _show_cycle_report(report: CycleReport) -> None:
    """Display a summary of one collection cycle."""
    table = Table(title="Collection Cycle")
    table.add_column("Step", style="cyan")
    table.add_column("Result", style="white")

    if report.reconcile is not None:
        rec = report.reconcile
        detail = f"{rec.observed} observed, {rec.created} created, {rec.updated} updated, {rec.deleted} deleted"
        if rec.deletion_skipped:
            detail += " (deletes skipped: empty runtime list)"
        table.add_row("Inventory", detail)
    table.add_row("Host sample", "stored" if report.host_sample_stored else "[red]missing[/]")
    table.add_row(
        "Container samples",
        f"{report.container_samples} stored, {report.containers_without_stats} without stats",
    )
    if report.sweep is not None:
        table.add_row("Retention", f"{report.sweep.total} rows deleted")
    table.add_row("Duration", f"{report.duration_seconds:.2f}s")
    console.print(table)

    if report.errors:
        errors = Table(title="Failed Steps", title_style="bold red")
        errors.add_column("Step", style="red")
        errors.add_column("Error")
        for error in report.errors:
            errors.add_row(error.step, error.message)
        console.print(errors)


def _show_frame(df: pd.DataFrame, title: str) -> None:
    table = Table(title=title)
    for column in df.columns:
        table.add_column(str(column))
    for row in df.itertuples(index=False):
        table.add_row(*("" if value is None else str(value) for value in row))
    console.print(table)


if __name__ == "__main__":
    app()
