"""webjobs CLI application."""

from __future__ import annotations

import signal
import sys
import threading
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from webjobs import __version__
from webjobs.config import DEFAULT_CONFIG_FILE, ConfigError, Settings, create_default_config, load_config
from webjobs.core.discovery import JobDiscovery
from webjobs.core.job_logger import read_status
from webjobs.core.manager import ContinuousJobsManager
from webjobs.core.script_hosts import build_script_hosts
from webjobs.core.supervisor import DISABLE_MARKER, MarkerWriteError, attempt
from webjobs.models import JobType, WebJobsConfig

app = typer.Typer(
    name="webjobs",
    help="webjobs - Continuous job supervisor",
    no_args_is_help=True,
)
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="Path to webjobs.yaml")

SYNC_INTERVAL = 30  # seconds between catch-up syncs in the daemon loop


def setup_logging(verbose: bool = False, level: str = "INFO") -> None:
    """Setup logging configuration."""
    logger.remove()

    level = "DEBUG" if verbose else level

    # Console logging
    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )


def _load(config_path: Optional[Path]) -> WebJobsConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _job_dir(config: WebJobsConfig, name: str) -> Path:
    job_dir = config.paths.get_jobs_root() / JobType.CONTINUOUS.value / name
    if not job_dir.is_dir():
        console.print(f"[red]Job '{name}' not found in {job_dir.parent}[/red]")
        raise typer.Exit(1)
    return job_dir


@app.command("run")
def run_daemon(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Run all continuous jobs in the foreground until interrupted."""
    config = _load(config_path)
    setup_logging(verbose, config.daemon.log_level)

    manager = ContinuousJobsManager(
        config,
        settings=Settings(config_path or DEFAULT_CONFIG_FILE, config),
        hosts=build_script_hosts(config.hosts),
    )
    shutdown = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        shutdown.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    logger.info(f"Supervising continuous jobs in {manager.jobs_path}")
    manager.sync()
    if config.daemon.watch:
        manager.watch()

    try:
        while not shutdown.wait(SYNC_INTERVAL):
            manager.sync()
    finally:
        manager.stop_watch()
        manager.stop_all()
        logger.info("All jobs stopped")


@app.command("list")
def list_jobs(config_path: Optional[Path] = ConfigOption) -> None:
    """List runnable continuous jobs."""
    config = _load(config_path)
    discovery = JobDiscovery(
        config.paths.get_jobs_root(),
        JobType.CONTINUOUS,
        build_script_hosts(config.hosts),
    )
    data_root = config.paths.get_data_root() / JobType.CONTINUOUS.value

    jobs = discovery.list_jobs()
    if not jobs:
        console.print(f"[yellow]No jobs found in {discovery.jobs_path}[/yellow]")
        return

    table = Table(title="Continuous jobs")
    table.add_column("Name", style="cyan")
    table.add_column("Command")
    table.add_column("Host")
    table.add_column("Enabled")
    table.add_column("Status")

    for job in jobs:
        disabled = (job.binaries_path / DISABLE_MARKER).exists()
        record = read_status(data_root / job.name)
        table.add_row(
            job.name,
            job.run_command,
            job.script_host.name,
            "[red]no[/red]" if disabled else "[green]yes[/green]",
            record.status.value if record else "-",
        )

    console.print(table)


@app.command("status")
def job_status(
    name: str = typer.Argument(..., help="Job name"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Show the last reported status of a job."""
    config = _load(config_path)
    job_dir = _job_dir(config, name)

    record = read_status(config.paths.get_data_root() / JobType.CONTINUOUS.value / name)
    disabled = (job_dir / DISABLE_MARKER).exists()

    console.print(f"[bold]{name}[/bold]")
    console.print(f"  Enabled: {'no' if disabled else 'yes'}")
    if record:
        console.print(f"  Status:  {record.status.value} (since {record.timestamp:%Y-%m-%d %H:%M:%S})")
    else:
        console.print("  Status:  [dim]never reported[/dim]")


@app.command("disable")
def disable_job(
    name: str = typer.Argument(..., help="Job name"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Disable a job. A running daemon stops it on its next sync."""
    config = _load(config_path)
    marker = _job_dir(config, name) / DISABLE_MARKER
    try:
        attempt(
            lambda: marker.write_bytes(b""),
            attempts=config.supervisor.marker_attempts,
            delay=config.supervisor.marker_retry_delay,
            description=f"Writing {marker}",
        )
    except MarkerWriteError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Disabled job '{name}'[/green]")


@app.command("enable")
def enable_job(
    name: str = typer.Argument(..., help="Job name"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Enable a job. A running daemon picks it up on its next sync."""
    config = _load(config_path)
    marker = _job_dir(config, name) / DISABLE_MARKER
    try:
        attempt(
            lambda: marker.unlink(missing_ok=True),
            attempts=config.supervisor.marker_attempts,
            delay=config.supervisor.marker_retry_delay,
            description=f"Deleting {marker}",
        )
    except MarkerWriteError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Enabled job '{name}'[/green]")


@app.command("init")
def init_config(config_path: Optional[Path] = ConfigOption) -> None:
    """Create the default configuration and directories."""
    path = create_default_config(config_path)
    console.print(f"[green]Configuration at {path}[/green]")


@app.command("version")
def version() -> None:
    """Show version information."""
    console.print(f"webjobs version {__version__}")


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
