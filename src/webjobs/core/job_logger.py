"""Per-job log and status reporting."""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path

from loguru import logger

from webjobs.models import ContinuousJobStatus, JobStatusRecord

JOB_LOG_FILE = "job_log.txt"
STATUS_FILE = "status"


def read_status(data_path: Path) -> JobStatusRecord | None:
    """Read the last status reported for a job.

    Args:
        data_path: The job's data directory

    Returns:
        The status record, or None if missing or unreadable
    """
    status_file = Path(data_path) / STATUS_FILE
    if not status_file.exists():
        return None
    try:
        return JobStatusRecord.model_validate_json(status_file.read_text())
    except Exception as e:
        logger.warning(f"Failed to read status file {status_file}: {e}")
        return None


class ContinuousJobLogger:
    """Writes a continuous job's log file and reports its status.

    Status is persisted as JSON in the job's data directory. Reporting never
    raises: a status that can't be written is logged and dropped.
    """

    def __init__(self, job_name: str, data_path: Path):
        self.job_name = job_name
        self.data_path = Path(data_path)
        self.log_path = self.data_path / JOB_LOG_FILE
        self.status_path = self.data_path / STATUS_FILE
        self._lock = threading.Lock()
        self._log = logger.bind(job=job_name)
        self.last_status: ContinuousJobStatus | None = None

    def report_status(self, status: ContinuousJobStatus) -> None:
        """Persist a status transition."""
        self.last_status = status
        record = JobStatusRecord(job_name=self.job_name, status=status)
        try:
            with self._lock:
                self.data_path.mkdir(parents=True, exist_ok=True)
                tmp_path = self.status_path.with_suffix(".tmp")
                tmp_path.write_text(record.model_dump_json())
                tmp_path.replace(self.status_path)
        except Exception as e:
            self._log.warning(f"Failed to report status {status.value} for '{self.job_name}': {e}")
            return
        self._log.debug(f"Job '{self.job_name}' status: {status.value}")
        self._write("SYS INFO", f"Status changed to {status.value}")

    def log_information(self, message: str) -> None:
        self._log.info(message)
        self._write("SYS INFO", message)

    def log_error(self, message: str) -> None:
        self._log.error(message)
        self._write("SYS ERR ", message)

    def _write(self, level: str, message: str) -> None:
        timestamp = datetime.now().isoformat(sep=" ", timespec="seconds")
        try:
            with self._lock:
                self.data_path.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a") as f:
                    f.write(f"[{timestamp} > {level}] {message}\n")
        except OSError as e:
            self._log.warning(f"Failed to write job log {self.log_path}: {e}")
