"""Job discovery for webjobs.

Each subdirectory of ``<jobs root>/<job type>/`` is a candidate job. A
directory without a runnable entry point is left out of the results.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from loguru import logger

from webjobs.core.script_hosts import SCRIPT_HOSTS, resolve_script
from webjobs.models import Job, JobType, ScriptHost


class JobDiscovery:
    """Builds Job records from a jobs binaries tree."""

    def __init__(
        self,
        jobs_root: Path,
        job_type: JobType = JobType.CONTINUOUS,
        hosts: Sequence[ScriptHost] = SCRIPT_HOSTS,
    ):
        """Initialize discovery.

        Args:
            jobs_root: Root holding one directory per job type
            job_type: Which job type directory to scan
            hosts: Script hosts in priority order
        """
        self.job_type = job_type
        self.jobs_path = Path(jobs_root) / job_type.value
        self._hosts = hosts

    def list_jobs(self) -> list[Job]:
        """List all runnable jobs, sorted by name."""
        if not self.jobs_path.is_dir():
            return []

        jobs = []
        for job_dir in sorted(p for p in self.jobs_path.iterdir() if p.is_dir()):
            job = self.build_job(job_dir)
            if job is not None:
                jobs.append(job)
        return jobs

    def get_job(self, name: str) -> Job | None:
        """Get a single job by name."""
        return self.build_job(self.jobs_path / name)

    def build_job(self, job_dir: Path) -> Job | None:
        """Build a job from its directory, or None if nothing is runnable."""
        if not job_dir.is_dir():
            return None

        files = sorted((f for f in job_dir.iterdir() if f.is_file()), key=lambda f: f.name)
        resolution = resolve_script(files, self._hosts)
        if resolution is None:
            logger.debug(f"No runnable entry point in {job_dir}, skipping")
            return None

        script_path = resolution.path.resolve()
        return Job(
            name=job_dir.name,
            binaries_path=job_dir.resolve(),
            script_file_path=script_path,
            run_command=script_path.relative_to(job_dir.resolve()).as_posix(),
            script_host=resolution.host,
            job_type=self.job_type,
        )
