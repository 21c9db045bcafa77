"""webjobs core components."""

from webjobs.core.commands import SupervisorCommandQueue
from webjobs.core.discovery import JobDiscovery
from webjobs.core.executor import JobInstanceExecutor
from webjobs.core.job_logger import ContinuousJobLogger
from webjobs.core.manager import ContinuousJobsManager
from webjobs.core.script_hosts import SCRIPT_HOSTS, ScriptResolution, resolve_script
from webjobs.core.supervisor import ContinuousJobSupervisor

__all__ = [
    "ContinuousJobLogger",
    "ContinuousJobSupervisor",
    "ContinuousJobsManager",
    "JobDiscovery",
    "JobInstanceExecutor",
    "SCRIPT_HOSTS",
    "ScriptResolution",
    "SupervisorCommandQueue",
    "resolve_script",
]
