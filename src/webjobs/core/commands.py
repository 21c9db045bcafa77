"""Serialized control of a supervisor.

Commands are queued and applied one at a time by a single control thread,
so concurrent callers get FIFO ordering of start/stop/refresh/disable/enable.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from webjobs.core.supervisor import ContinuousJobSupervisor
from webjobs.models import Job


class CommandType(str, Enum):
    """Control command kinds."""

    START = "start"
    STOP = "stop"
    REFRESH = "refresh"
    DISABLE = "disable"
    ENABLE = "enable"


@dataclass
class Command:
    """A queued control command."""

    type: CommandType
    job: Job | None = None
    future: Future = field(default_factory=Future)


_CLOSE = object()


class SupervisorCommandQueue:
    """Feeds control commands to one supervisor through a single thread."""

    def __init__(self, supervisor: ContinuousJobSupervisor):
        self.supervisor = supervisor
        self._queue: queue.Queue = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run,
            name=f"webjobs-control-{supervisor.job_name}",
            daemon=True,
        )
        self._thread.start()

    def submit(self, command_type: CommandType, job: Job | None = None) -> Future:
        """Queue a command.

        Returns:
            Future resolved once the command has been applied
        """
        if command_type in (CommandType.START, CommandType.REFRESH, CommandType.ENABLE) and job is None:
            raise ValueError(f"Command '{command_type.value}' needs a job")

        command = Command(type=command_type, job=job)
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Command queue of '{self.supervisor.job_name}' is closed")
            self._queue.put(command)
        return command.future

    def start(self, job: Job) -> Future:
        return self.submit(CommandType.START, job)

    def stop(self) -> Future:
        return self.submit(CommandType.STOP)

    def refresh(self, job: Job) -> Future:
        return self.submit(CommandType.REFRESH, job)

    def disable(self) -> Future:
        return self.submit(CommandType.DISABLE)

    def enable(self, job: Job) -> Future:
        return self.submit(CommandType.ENABLE, job)

    def close(self, timeout: float | None = None) -> None:
        """Apply pending commands and stop the control thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_CLOSE)
        self._thread.join(timeout=timeout)

    def _apply(self, command: Command):
        supervisor = self.supervisor
        if command.type == CommandType.START:
            return supervisor.start(command.job)
        if command.type == CommandType.STOP:
            return supervisor.stop()
        if command.type == CommandType.REFRESH:
            return supervisor.refresh(command.job)
        if command.type == CommandType.DISABLE:
            return supervisor.disable()
        if command.type == CommandType.ENABLE:
            return supervisor.enable(command.job)
        raise ValueError(f"Unknown command: {command.type}")

    def _run(self) -> None:
        while True:
            command = self._queue.get()
            if command is _CLOSE:
                break

            if not command.future.set_running_or_notify_cancel():
                continue

            try:
                result = self._apply(command)
            except Exception as e:
                logger.error(f"Command '{command.type.value}' on '{self.supervisor.job_name}' failed: {e}")
                command.future.set_exception(e)
            else:
                command.future.set_result(result)
