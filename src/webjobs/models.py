"""Pydantic models for webjobs configuration and state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class JobType(str, Enum):
    """Type of job, named after its directory under the jobs root."""

    CONTINUOUS = "continuous"
    TRIGGERED = "triggered"


class ContinuousJobStatus(str, Enum):
    """Status values pushed to the status reporter."""

    INITIALIZING = "Initializing"
    STARTING = "Starting"
    RUNNING = "Running"
    PENDING_RESTART = "PendingRestart"
    STOPPED = "Stopped"


class SupervisorState(str, Enum):
    """Run state of a continuous job supervisor."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    PENDING_RESTART = "pending_restart"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ScriptHost:
    """An interpreter able to run job entry files.

    A host with an empty ``host_path`` is not available on this machine and
    is skipped by the resolver.
    """

    name: str
    extensions: tuple[str, ...]
    host_path: str | None = None
    arguments: tuple[str, ...] = ()
    direct_extensions: tuple[str, ...] = ()  # executed without the interpreter

    def __post_init__(self) -> None:
        if not self.extensions:
            raise ValueError(f"Script host '{self.name}' declares no extensions")

    @property
    def is_available(self) -> bool:
        """Check if the interpreter is configured."""
        return bool(self.host_path)

    def build_command(self, script_path: Path) -> list[str]:
        """Build the argv that runs a script with this host."""
        suffix = script_path.suffix.lower()
        if any(suffix == ext.lower() for ext in self.direct_extensions):
            return [str(script_path)]
        if not self.host_path:
            raise RuntimeError(f"Script host '{self.name}' is not available")
        return [self.host_path, *self.arguments, str(script_path)]


class Job(BaseModel):
    """A job discovered on disk, with its resolved entry point."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    binaries_path: Path
    script_file_path: Path  # absolute
    run_command: str  # relative to binaries_path
    script_host: ScriptHost
    job_type: JobType = JobType.CONTINUOUS

    def build_command(self) -> list[str]:
        """Get the argv that runs this job."""
        return self.script_host.build_command(self.script_file_path)


class JobStatusRecord(BaseModel):
    """Last status reported for a job, as persisted in its status file."""

    job_name: str
    status: ContinuousJobStatus
    timestamp: datetime = Field(default_factory=datetime.now)


class PathsConfig(BaseModel):
    """Filesystem roots."""

    jobs_root: str = "~/.webjobs/jobs"  # binaries: <root>/continuous/<job>/
    data_root: str = "~/.webjobs/data"  # logs and status: <root>/continuous/<job>/

    def get_jobs_root(self) -> Path:
        return Path(self.jobs_root).expanduser()

    def get_data_root(self) -> Path:
        return Path(self.data_root).expanduser()


class ShutdownConfig(BaseModel):
    """Shutdown configuration for a supervisor."""

    grace_period: float = 60  # seconds to wait for the worker on stop
    kill_timeout: float = 5  # seconds to wait for a killed child


class SupervisorConfig(BaseModel):
    """Restart behaviour of continuous jobs."""

    restart_interval: float = 60  # seconds between a crash and the restart
    stop_poll_interval: float = 0.2  # granularity of the interruptible wait
    marker_attempts: int = 3
    marker_retry_delay: float = 0.25  # seconds


class HostsConfig(BaseModel):
    """Interpreter path overrides.

    ``None`` means look the interpreter up on PATH, an empty string disables
    the host.
    """

    bash: str | None = None
    python: str | None = None
    php: str | None = None
    node: str | None = None


class DaemonConfig(BaseModel):
    """Daemon configuration."""

    log_level: str = "INFO"
    watch: bool = True  # re-sync jobs when the jobs tree changes
    sync_debounce: float = 2.0  # seconds


class WebJobsConfig(BaseModel):
    """Main webjobs configuration."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    shutdown: ShutdownConfig = Field(default_factory=ShutdownConfig)
    hosts: HostsConfig = Field(default_factory=HostsConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
