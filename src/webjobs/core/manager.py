"""Continuous jobs manager for webjobs.

Keeps one supervisor per job name and reconciles them with the jobs found on
disk. Job directories can be watched so that deployments are picked up
without restarting the daemon.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Sequence

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from webjobs.config import Settings
from webjobs.core.discovery import JobDiscovery
from webjobs.core.executor import JobInstanceExecutor
from webjobs.core.job_logger import read_status
from webjobs.core.script_hosts import SCRIPT_HOSTS
from webjobs.core.supervisor import DISABLE_MARKER, ContinuousJobSupervisor
from webjobs.models import Job, JobStatusRecord, JobType, ScriptHost, WebJobsConfig


CHANGE_EVENTS = ("created", "deleted", "modified", "moved")


class JobsChangeHandler(FileSystemEventHandler):
    """Debounces filesystem events into a single sync call."""

    def __init__(self, on_change, debounce: float):
        super().__init__()
        self._on_change = on_change
        self._debounce = debounce
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def on_any_event(self, event: FileSystemEvent) -> None:
        # Reads (opened/closed) come from the jobs themselves starting up
        if event.event_type not in CHANGE_EVENTS:
            return
        if Path(str(event.src_path)).name.endswith(".tmp"):
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        try:
            self._on_change()
        except Exception as e:
            logger.error(f"Jobs sync after change failed: {e}")

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class ContinuousJobsManager:
    """Owns the supervisors of all continuous jobs."""

    def __init__(
        self,
        config: WebJobsConfig,
        settings: Settings | None = None,
        hosts: Sequence[ScriptHost] = SCRIPT_HOSTS,
    ):
        self.config = config
        self._settings = settings or Settings(config=config)
        self._discovery = JobDiscovery(config.paths.get_jobs_root(), JobType.CONTINUOUS, hosts)
        self.data_path = config.paths.get_data_root() / JobType.CONTINUOUS.value

        self._supervisors: dict[str, ContinuousJobSupervisor] = {}
        self._jobs: dict[str, Job] = {}
        self._lock = threading.RLock()
        self._observer = None
        self._handler: JobsChangeHandler | None = None

    @property
    def jobs_path(self) -> Path:
        return self._discovery.jobs_path

    def get_supervisor(self, name: str) -> ContinuousJobSupervisor:
        """Get the supervisor of a job, creating it on first use."""
        with self._lock:
            supervisor = self._supervisors.get(name)
            if supervisor is None:
                supervisor = ContinuousJobSupervisor(
                    job_name=name,
                    binaries_path=self.jobs_path / name,
                    data_path=self.data_path / name,
                    settings=self._settings,
                    executor=JobInstanceExecutor(kill_timeout=self.config.shutdown.kill_timeout),
                    grace_period=self.config.shutdown.grace_period,
                    stop_poll_interval=self.config.supervisor.stop_poll_interval,
                    marker_attempts=self.config.supervisor.marker_attempts,
                    marker_retry_delay=self.config.supervisor.marker_retry_delay,
                )
                self._supervisors[name] = supervisor
            return supervisor

    def list_jobs(self) -> list[Job]:
        return self._discovery.list_jobs()

    def get_job(self, name: str) -> Job | None:
        return self._discovery.get_job(name)

    def sync(self) -> None:
        """Reconcile supervisors with the jobs on disk.

        New jobs are started, changed jobs refreshed, removed jobs stopped.
        """
        with self._lock:
            found = {job.name: job for job in self._discovery.list_jobs()}

            for name, job in found.items():
                supervisor = self.get_supervisor(name)
                previous = self._jobs.get(name)

                if previous is not None and previous != job:
                    logger.info(f"Job '{name}' changed, refreshing")
                    supervisor.refresh(job)
                elif supervisor.is_started and supervisor.is_disabled:
                    logger.info(f"Job '{name}' was disabled from outside, stopping")
                    supervisor.stop()
                elif supervisor.is_started and (supervisor.worker is None or not supervisor.worker.is_alive()):
                    # The loop ended on its own; pick it up again
                    logger.info(f"Worker of job '{name}' ended, restarting")
                    supervisor.refresh(job)
                elif not supervisor.is_started:
                    supervisor.start(job)

                self._jobs[name] = job

            for name in list(self._jobs):
                if name not in found:
                    logger.info(f"Job '{name}' removed, stopping")
                    self._supervisors[name].stop()
                    del self._jobs[name]

    def stop_all(self) -> None:
        """Stop every supervisor, in parallel."""
        with self._lock:
            supervisors = list(self._supervisors.values())

        threads = [
            threading.Thread(target=s.stop, name=f"webjobs-stop-{s.job_name}") for s in supervisors
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def disable(self, name: str) -> None:
        """Disable a job. Raises MarkerWriteError if the marker can't be written."""
        with self._lock:
            self.get_supervisor(name).disable()

    def enable(self, name: str) -> bool:
        """Enable a job and start it if it's runnable.

        Returns:
            False if the job has no runnable entry point
        """
        with self._lock:
            job = self.get_job(name)
            supervisor = self.get_supervisor(name)
            if job is None:
                supervisor.disable_file_path.unlink(missing_ok=True)
                return False
            supervisor.enable(job)
            self._jobs[name] = job
            return True

    def get_status(self, name: str) -> JobStatusRecord | None:
        """Get the last reported status of a job."""
        return read_status(self.data_path / name)

    def is_disabled(self, name: str) -> bool:
        return (self.jobs_path / name / DISABLE_MARKER).exists()

    # Watching

    def watch(self) -> None:
        """Sync whenever the continuous jobs tree changes."""
        if self._observer is not None:
            return
        self.jobs_path.mkdir(parents=True, exist_ok=True)
        self._handler = JobsChangeHandler(self.sync, self.config.daemon.sync_debounce)
        self._observer = Observer()
        self._observer.schedule(self._handler, str(self.jobs_path), recursive=True)
        self._observer.start()
        logger.info(f"Watching {self.jobs_path} for job changes")

    def stop_watch(self) -> None:
        if self._observer is None:
            return
        self._handler.cancel()
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        self._handler = None
