"""Continuous job supervisor for webjobs.

A supervisor owns the lifecycle of one continuous job. ``start`` spawns a
single worker thread that runs the job, waits for it to exit and restarts it
after the configured interval, until the job is stopped or disabled.

Only the started flag is synchronized. The worker handle is touched by
callers of ``start``/``stop``/``refresh``, which are expected not to race
each other for the same job; use ``SupervisorCommandQueue`` when strict
ordering is needed.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from loguru import logger

from webjobs.config import Settings
from webjobs.core.executor import JobInstanceExecutor
from webjobs.core.job_logger import ContinuousJobLogger
from webjobs.models import ContinuousJobStatus, Job, JobType, SupervisorState

DISABLE_MARKER = "disable.job"

DEFAULT_GRACE_PERIOD = 60  # seconds
STOP_POLL_INTERVAL = 0.2  # seconds
MARKER_ATTEMPTS = 3
MARKER_RETRY_DELAY = 0.25  # seconds


class JobTypeError(Exception):
    """A job of the wrong type was handed to a supervisor."""

    pass


class MarkerWriteError(Exception):
    """The disable marker could not be written or removed."""

    pass


def attempt(action, attempts: int = MARKER_ATTEMPTS, delay: float = MARKER_RETRY_DELAY, description: str = ""):
    """Run a filesystem action, retrying transient OS errors.

    Raises:
        MarkerWriteError: When every attempt failed
    """
    last_error: OSError | None = None
    for attempt_no in range(1, attempts + 1):
        try:
            return action()
        except OSError as e:
            last_error = e
            logger.warning(f"{description or 'Operation'} failed (attempt {attempt_no}/{attempts}): {e}")
            if attempt_no < attempts:
                time.sleep(delay)
    raise MarkerWriteError(f"{description or 'Operation'} failed after {attempts} attempts: {last_error}") from last_error


class ContinuousJobSupervisor:
    """Supervises one continuous job."""

    def __init__(
        self,
        job_name: str,
        binaries_path: Path,
        data_path: Path,
        settings: Settings,
        executor: JobInstanceExecutor | None = None,
        job_logger: ContinuousJobLogger | None = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        stop_poll_interval: float = STOP_POLL_INTERVAL,
        marker_attempts: int = MARKER_ATTEMPTS,
        marker_retry_delay: float = MARKER_RETRY_DELAY,
    ):
        """Initialize the supervisor.

        Args:
            job_name: Name of the supervised job
            binaries_path: The job's directory, where the disable marker lives
            data_path: The job's data directory (log and status)
            settings: Live settings, polled for the restart interval
            executor: Runs job instances
            job_logger: Log and status reporter of the job
            grace_period: Seconds ``stop`` waits for the worker
            stop_poll_interval: Granularity of the wait between restarts
            marker_attempts: Attempts to write or delete the disable marker
            marker_retry_delay: Seconds between marker attempts
        """
        self.job_name = job_name
        self.binaries_path = Path(binaries_path)
        self.disable_file_path = self.binaries_path / DISABLE_MARKER
        self._settings = settings
        self._executor = executor or JobInstanceExecutor()
        self._job_logger = job_logger or ContinuousJobLogger(job_name, data_path)
        self._grace_period = grace_period
        self._stop_poll_interval = stop_poll_interval
        self._marker_attempts = marker_attempts
        self._marker_retry_delay = marker_retry_delay

        self._started = 0
        self._started_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None
        self._state = SupervisorState.IDLE
        self.forced_stops = 0

        self._report_status(ContinuousJobStatus.INITIALIZING)

    # State

    def _exchange_started(self, value: int) -> int:
        """Set the started flag, returning its previous value."""
        with self._started_lock:
            previous = self._started
            self._started = value
            return previous

    @property
    def is_started(self) -> bool:
        return self._started == 1

    @property
    def is_disabled(self) -> bool:
        """Check the disable marker. Never cached."""
        return self.disable_file_path.exists()

    @property
    def state(self) -> SupervisorState:
        """Current state; STOPPED as soon as the worker loop has ended."""
        return self._state

    @property
    def worker(self) -> threading.Thread | None:
        return self._thread

    @property
    def job_logger(self) -> ContinuousJobLogger:
        return self._job_logger

    def _report_status(self, status: ContinuousJobStatus) -> None:
        try:
            self._job_logger.report_status(status)
        except Exception as e:
            logger.error(f"Status reporter failed for '{self.job_name}': {e}")

    # Control

    def start(self, job: Job) -> bool:
        """Start supervising a job.

        No-op if already started or disabled. Returns without waiting for the
        job instance to launch.

        Returns:
            True if a worker was spawned
        """
        if job.job_type != JobType.CONTINUOUS:
            raise JobTypeError(f"Job '{job.name}' is {job.job_type.value}, not continuous")

        if self._exchange_started(1) == 1:
            return False

        if self.is_disabled:
            self._exchange_started(0)
            logger.info(f"Job '{self.job_name}' is disabled, not starting")
            return False

        stop_event = threading.Event()
        self._stop_event = stop_event
        self._state = SupervisorState.STARTING
        self._report_status(ContinuousJobStatus.STARTING)

        self._thread = threading.Thread(
            target=self._supervise,
            args=(job, stop_event),
            name=f"webjobs-{self.job_name}",
            daemon=True,
        )
        self._thread.start()
        return True

    def stop(self) -> None:
        """Stop the job and its worker.

        Returns within the grace period plus kill latency. A worker that
        doesn't finish in time is abandoned.
        """
        self._exchange_started(0)
        if self._stop_event is not None:
            self._stop_event.set()

        self._executor.kill_all(self._job_logger)

        thread = self._thread
        if thread is None:
            return

        thread.join(timeout=self._grace_period)
        if thread.is_alive():
            self.forced_stops += 1
            logger.warning(
                f"Worker of job '{self.job_name}' did not finish within {self._grace_period}s, "
                f"killing the instance and abandoning the worker"
            )
            self._executor.kill_all(self._job_logger)
        else:
            logger.debug(f"Worker of job '{self.job_name}' finished")

        self._thread = None
        self._stop_event = None
        self._state = SupervisorState.STOPPED
        self._report_status(ContinuousJobStatus.STOPPED)

    def refresh(self, job: Job) -> None:
        """Restart supervision with a possibly changed job."""
        self.stop()
        self.start(job)

    def disable(self) -> None:
        """Write the disable marker, then stop.

        Raises:
            MarkerWriteError: If the marker could not be written
        """
        attempt(
            lambda: self.disable_file_path.write_bytes(b""),
            attempts=self._marker_attempts,
            delay=self._marker_retry_delay,
            description=f"Writing {self.disable_file_path}",
        )
        logger.info(f"Disabled job '{self.job_name}'")
        self.stop()

    def enable(self, job: Job) -> None:
        """Remove the disable marker, then start.

        Raises:
            MarkerWriteError: If the marker could not be removed
        """
        attempt(
            lambda: self.disable_file_path.unlink(missing_ok=True),
            attempts=self._marker_attempts,
            delay=self._marker_retry_delay,
            description=f"Deleting {self.disable_file_path}",
        )
        logger.info(f"Enabled job '{self.job_name}'")
        self.start(job)

    # Worker

    def _should_run(self, stop_event: threading.Event) -> bool:
        return self._started == 1 and not stop_event.is_set() and not self.is_disabled

    def _supervise(self, job: Job, stop_event: threading.Event) -> None:
        """Supervision loop, runs on the worker thread."""
        try:
            while self._should_run(stop_event):
                self._run_instance(job, stop_event)

                if self._should_run(stop_event):
                    interval = self._settings.get_restart_interval()
                    self._job_logger.log_information(f"Process went down, waiting for {interval} seconds")
                    self._state = SupervisorState.PENDING_RESTART
                    self._report_status(ContinuousJobStatus.PENDING_RESTART)
                    self._wait_for_time_or_stop(interval, stop_event)
        except Exception:
            logger.exception(f"Supervision loop of job '{self.job_name}' failed, job left stopped")
        finally:
            # An abandoned worker must not overwrite the state of a newer one
            if self._stop_event is stop_event or self._stop_event is None:
                self._state = SupervisorState.STOPPED

    def _run_instance(self, job: Job, stop_event: threading.Event) -> None:
        try:
            self._executor.initialize(job, self._job_logger)
            self._state = SupervisorState.RUNNING
            self._executor.run(job, self._job_logger, should_run=lambda: self._should_run(stop_event))
        except Exception as e:
            self._job_logger.log_error(f"Job instance of '{job.name}' failed: {e}")

    def _wait_for_time_or_stop(self, seconds: float, stop_event: threading.Event) -> None:
        deadline = time.monotonic() + seconds
        while self._started == 1 and not stop_event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            stop_event.wait(min(self._stop_poll_interval, remaining))
