"""Job instance execution for webjobs."""

from __future__ import annotations

import os
import subprocess
import threading
from datetime import datetime
from typing import IO, Callable

import psutil
from loguru import logger

from webjobs.core.job_logger import ContinuousJobLogger
from webjobs.models import ContinuousJobStatus, Job


class ProcessHandle:
    """Handle to a running job instance."""

    def __init__(self, job_name: str, process: subprocess.Popen[bytes], output_file: IO[bytes]):
        self.job_name = job_name
        self.process = process
        self.output_file = output_file
        self.started_at = datetime.now()

    @property
    def pid(self) -> int:
        """Get the process ID."""
        return self.process.pid

    def is_running(self) -> bool:
        """Check if the process is still running."""
        return self.process.poll() is None

    def kill_tree(self, timeout: float = 5) -> None:
        """Kill the process and all of its children.

        Never raises for processes that already exited.
        """
        try:
            parent = psutil.Process(self.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        for proc in procs:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                logger.warning(f"Cannot kill PID {proc.pid} of job '{self.job_name}': {e}")

        # The parent is reaped by whoever waits on the Popen
        gone, alive = psutil.wait_procs(procs[:-1], timeout=timeout)
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            alive.append(parent)
        if alive:
            logger.warning(
                f"Job '{self.job_name}' has {len(alive)} process(es) still alive after kill: "
                f"{[p.pid for p in alive]}"
            )

    def wait(self, timeout: float | None = None) -> int:
        """Wait for process to finish."""
        return self.process.wait(timeout=timeout)

    def close_files(self) -> None:
        """Close the output file handle."""
        if self.output_file and not self.output_file.closed:
            self.output_file.close()


class JobInstanceExecutor:
    """Starts job instances and blocks until they exit.

    One executor serves one supervisor; it tracks the instance it started so
    that ``kill_all`` can terminate it from another thread.
    """

    def __init__(self, kill_timeout: float = 5):
        self._kill_timeout = kill_timeout
        self._lock = threading.Lock()
        self._handle: ProcessHandle | None = None
        self.run_count = 0

    @property
    def current(self) -> ProcessHandle | None:
        return self._handle

    def initialize(self, job: Job, job_logger: ContinuousJobLogger) -> None:
        """Prepare per-run resources.

        Raises:
            FileNotFoundError: If the job's entry point is gone
        """
        job_logger.data_path.mkdir(parents=True, exist_ok=True)

        if not job.script_file_path.exists():
            raise FileNotFoundError(f"Entry point of job '{job.name}' not found: {job.script_file_path}")

        self.run_count += 1
        job_logger.log_information(
            f"Run #{self.run_count} of '{job.name}': {job.run_command} (host: {job.script_host.name})"
        )

    def run(
        self,
        job: Job,
        job_logger: ContinuousJobLogger,
        should_run: Callable[[], bool] | None = None,
    ) -> int | None:
        """Run one instance of a job until it exits.

        Args:
            job: The job to run
            job_logger: Logger of the job
            should_run: Checked right before spawning; when it returns False
                nothing is started

        Returns:
            The exit code, or None if the instance was not started
        """
        env = os.environ.copy()
        env["WEBJOBS_NAME"] = job.name
        env["WEBJOBS_TYPE"] = job.job_type.value
        env["WEBJOBS_DATA_PATH"] = str(job_logger.data_path)

        cmd = job.build_command()

        with self._lock:
            if should_run is not None and not should_run():
                return None

            output_file = open(job_logger.log_path, "ab")
            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=job.binaries_path,
                    env=env,
                    stdin=subprocess.DEVNULL,
                    stdout=output_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,  # Create new process group
                )
            except Exception:
                output_file.close()
                raise
            handle = ProcessHandle(job.name, process, output_file)
            self._handle = handle

        logger.info(f"Started job '{job.name}' (PID: {handle.pid})")

        try:
            try:
                job_logger.report_status(ContinuousJobStatus.RUNNING)
            except Exception as e:
                logger.error(f"Status reporter failed for '{job.name}': {e}")
            exit_code = handle.wait()
        finally:
            handle.close_files()
            with self._lock:
                if self._handle is handle:
                    self._handle = None

        duration = (datetime.now() - handle.started_at).total_seconds()
        job_logger.log_information(f"Process exited with code {exit_code} after {duration:.1f}s")
        return exit_code

    def kill_all(self, job_logger: ContinuousJobLogger | None = None) -> None:
        """Kill the running instance, if any. Never raises."""
        with self._lock:
            handle = self._handle
            if handle is None:
                return
            try:
                if handle.is_running():
                    if job_logger:
                        job_logger.log_information(f"Killing process {handle.pid}")
                    handle.kill_tree(timeout=self._kill_timeout)
            except Exception as e:
                logger.error(f"Failed to kill job '{handle.job_name}' (PID {handle.pid}): {e}")
