"""Tests for job instance execution with real processes."""

import shutil
import sys
import threading
import time
from pathlib import Path

import psutil
import pytest

from webjobs.core.executor import JobInstanceExecutor
from webjobs.core.job_logger import ContinuousJobLogger, read_status
from webjobs.core.supervisor import ContinuousJobSupervisor
from webjobs.models import ContinuousJobStatus, Job, ScriptHost


MOCK_JOBS = Path(__file__).parent / "mock_jobs"
PYTHON = ScriptHost(name="python", extensions=(".py",), host_path=sys.executable, arguments=("-u",))


def make_job(tmp_path, mock_script: str, name: str = "worker") -> Job:
    job_dir = tmp_path / "jobs" / "continuous" / name
    job_dir.mkdir(parents=True)
    script = job_dir / "run.py"
    shutil.copy(MOCK_JOBS / mock_script, script)
    return Job(
        name=name,
        binaries_path=job_dir,
        script_file_path=script,
        run_command="run.py",
        script_host=PYTHON,
    )


def wait_until(predicate, timeout: float = 10.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def job_logger(tmp_path):
    return ContinuousJobLogger("worker", tmp_path / "data" / "continuous" / "worker")


class TestJobInstanceExecutor:
    """Tests for JobInstanceExecutor."""

    def test_run_returns_exit_code(self, tmp_path, job_logger):
        job = make_job(tmp_path, "crashing_job.py")
        executor = JobInstanceExecutor()

        executor.initialize(job, job_logger)
        exit_code = executor.run(job, job_logger)

        assert exit_code == 3
        assert executor.current is None
        assert executor.run_count == 1

    def test_output_and_environment_in_job_log(self, tmp_path, job_logger):
        job = make_job(tmp_path, "crashing_job.py")
        executor = JobInstanceExecutor()

        executor.initialize(job, job_logger)
        executor.run(job, job_logger)

        log = job_logger.log_path.read_text()
        assert "Job worker (continuous) starting..." in log
        assert "Simulated crash" in log
        assert "Process exited with code 3" in log

    def test_running_status_reported(self, tmp_path, job_logger):
        job = make_job(tmp_path, "crashing_job.py")
        executor = JobInstanceExecutor()

        executor.initialize(job, job_logger)
        executor.run(job, job_logger)

        assert job_logger.last_status == ContinuousJobStatus.RUNNING
        assert read_status(job_logger.data_path).status == ContinuousJobStatus.RUNNING

    def test_initialize_fails_when_entry_point_gone(self, tmp_path, job_logger):
        job = make_job(tmp_path, "crashing_job.py")
        job.script_file_path.unlink()

        with pytest.raises(FileNotFoundError):
            JobInstanceExecutor().initialize(job, job_logger)

    def test_should_run_false_skips_spawn(self, tmp_path, job_logger):
        job = make_job(tmp_path, "continuous_job.py")
        executor = JobInstanceExecutor()

        assert executor.run(job, job_logger, should_run=lambda: False) is None
        assert executor.current is None
        assert not job_logger.log_path.exists()

    def test_kill_all_ends_blocking_run(self, tmp_path, job_logger):
        job = make_job(tmp_path, "continuous_job.py")
        executor = JobInstanceExecutor(kill_timeout=5)
        results = []

        runner = threading.Thread(target=lambda: results.append(executor.run(job, job_logger)))
        runner.start()
        assert wait_until(lambda: executor.current is not None)
        pid = executor.current.pid

        executor.kill_all(job_logger)
        runner.join(timeout=10)

        assert not runner.is_alive()
        assert results and results[0] != 0
        assert not psutil.pid_exists(pid) or psutil.Process(pid).status() == psutil.STATUS_ZOMBIE

    def test_kill_all_without_instance(self, job_logger):
        JobInstanceExecutor().kill_all(job_logger)

    def test_kill_all_after_exit_does_not_raise(self, tmp_path, job_logger):
        job = make_job(tmp_path, "crashing_job.py")
        executor = JobInstanceExecutor()
        executor.run(job, job_logger)
        executor.kill_all(job_logger)


class TestSupervisorWithProcesses:
    """End to end: supervisor driving real processes."""

    class Settings:
        def __init__(self, interval):
            self.interval = interval

        def get_restart_interval(self):
            return self.interval

    def test_crashing_job_is_restarted(self, tmp_path):
        job = make_job(tmp_path, "crashing_job.py")
        executor = JobInstanceExecutor()
        supervisor = ContinuousJobSupervisor(
            job_name=job.name,
            binaries_path=job.binaries_path,
            data_path=tmp_path / "data" / job.name,
            settings=self.Settings(0.2),
            executor=executor,
        )

        supervisor.start(job)
        try:
            assert wait_until(lambda: executor.run_count >= 3)
        finally:
            supervisor.stop()

        log = supervisor.job_logger.log_path.read_text()
        assert "Process went down, waiting for 0.2 seconds" in log
        assert read_status(supervisor.job_logger.data_path).status == ContinuousJobStatus.STOPPED

    def test_stop_kills_long_running_job(self, tmp_path):
        job = make_job(tmp_path, "continuous_job.py")
        executor = JobInstanceExecutor()
        supervisor = ContinuousJobSupervisor(
            job_name=job.name,
            binaries_path=job.binaries_path,
            data_path=tmp_path / "data" / job.name,
            settings=self.Settings(60),
            executor=executor,
            grace_period=10,
        )

        supervisor.start(job)
        assert wait_until(lambda: executor.current is not None)

        t0 = time.monotonic()
        supervisor.stop()

        assert time.monotonic() - t0 < 10
        assert supervisor.forced_stops == 0
        assert executor.current is None
        assert executor.run_count == 1

    def test_running_report_failure_keeps_one_instance(self, tmp_path):
        class RunningReportFails(ContinuousJobLogger):
            def report_status(self, status):
                if status == ContinuousJobStatus.RUNNING:
                    raise OSError("status store unavailable")
                super().report_status(status)

        def job_processes():
            alive = []
            for proc in psutil.Process().children(recursive=True):
                try:
                    if proc.status() != psutil.STATUS_ZOMBIE and str(job.script_file_path) in proc.cmdline():
                        alive.append(proc)
                except psutil.Error:
                    pass
            return alive

        job = make_job(tmp_path, "continuous_job.py")
        executor = JobInstanceExecutor()
        data_path = tmp_path / "data" / job.name
        supervisor = ContinuousJobSupervisor(
            job_name=job.name,
            binaries_path=job.binaries_path,
            data_path=data_path,
            settings=self.Settings(0.1),
            executor=executor,
            job_logger=RunningReportFails(job.name, data_path),
            grace_period=10,
        )

        supervisor.start(job)
        try:
            assert wait_until(lambda: executor.current is not None)
            time.sleep(1.0)
            assert len(job_processes()) <= 1
            assert executor.run_count == 1
        finally:
            supervisor.stop()

        assert wait_until(lambda: job_processes() == [], timeout=5)
