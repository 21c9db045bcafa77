"""Script hosts and entry point resolution.

A job directory is runnable when one of its top-level files can be executed by
an available script host. Resolution is deterministic:

- hosts are scanned in a fixed priority order, extensions in declaration order
- a file named ``run.<ext>`` is taken immediately
- otherwise the first supported file seen across the whole scan is used
"""

from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from webjobs.models import HostsConfig, ScriptHost

DEFAULT_SCRIPT_FILE_NAME = "run"


def _lookup(override: str | None, executable: str) -> str | None:
    if override is not None:
        return override or None
    return shutil.which(executable)


def _windows_host_path() -> str | None:
    if sys.platform != "win32":
        return None
    return os.environ.get("COMSPEC") or shutil.which("cmd.exe")


def build_script_hosts(config: HostsConfig | None = None) -> tuple[ScriptHost, ...]:
    """Build the priority-ordered host registry.

    Interpreter paths are looked up once, here.
    """
    config = config or HostsConfig()

    python_path = config.python if config.python is not None else sys.executable

    return (
        ScriptHost(
            name="windows",
            extensions=(".cmd", ".bat", ".exe"),
            host_path=_windows_host_path(),
            arguments=("/c",),
            direct_extensions=(".exe",),
        ),
        ScriptHost(name="bash", extensions=(".sh",), host_path=_lookup(config.bash, "bash")),
        ScriptHost(name="python", extensions=(".py",), host_path=python_path or None, arguments=("-u",)),
        ScriptHost(name="php", extensions=(".php",), host_path=_lookup(config.php, "php")),
        ScriptHost(name="node", extensions=(".js",), host_path=_lookup(config.node, "node")),
    )


# Process-wide registry, read-only
SCRIPT_HOSTS: tuple[ScriptHost, ...] = build_script_hosts()


@dataclass(frozen=True)
class ScriptResolution:
    """The host and entry file chosen for a job directory."""

    host: ScriptHost
    path: Path


def resolve_script(
    files: Iterable[Path],
    hosts: Sequence[ScriptHost] = SCRIPT_HOSTS,
) -> ScriptResolution | None:
    """Pick the (host, entry file) pair for a set of top-level files.

    Args:
        files: Files of the job directory, in listing order
        hosts: Script hosts in priority order

    Returns:
        The resolution, or None when nothing in the directory is runnable
    """
    files = [Path(f) for f in files]
    secondary: ScriptResolution | None = None

    for host in hosts:
        if not host.is_available:
            continue

        for extension in host.extensions:
            ext = extension.lower()
            matching = [f for f in files if f.suffix.lower() == ext]
            if not matching:
                continue

            default_name = f"{DEFAULT_SCRIPT_FILE_NAME}{ext}"
            for f in matching:
                if f.name.lower() == default_name:
                    return ScriptResolution(host=host, path=f)

            if secondary is None:
                secondary = ScriptResolution(host=host, path=matching[0])

    return secondary
