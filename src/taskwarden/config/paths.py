"""Centralized path management for taskwarden.

All state (settings, scheduler document, logs, working directory) lives under
a single base directory. The base directory can be overridden with the
TASKWARDEN_HOME environment variable.

Default locations:
- Linux/macOS: ~/.taskwarden
- Windows: %USERPROFILE%\\.taskwarden
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "TASKWARDEN_HOME"

CONFIG_DOCUMENT_NAME = "scheduler-config.json"


@lru_cache(maxsize=1)
def get_taskwarden_home() -> Path:
    """Get the base directory for all taskwarden data.

    Resolution order:
    1. TASKWARDEN_HOME environment variable (if set)
    2. Platform default (~/.taskwarden)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".taskwarden"


def get_settings_path() -> Path:
    """Get the default service settings file path."""
    return get_taskwarden_home() / "config.toml"


def get_work_dir() -> Path:
    """Get the scheduler working directory."""
    return get_taskwarden_home() / "scheduler"


def get_config_document_path(work_dir: Path | None = None) -> Path:
    """Get the scheduler configuration document path.

    The document lives at ``{work_dir}/config/scheduler-config.json``.
    """
    return (work_dir or get_work_dir()) / "config" / CONFIG_DOCUMENT_NAME


def get_logs_path() -> Path:
    """Get the default logs directory path."""
    return get_taskwarden_home() / "logs"


def get_run_path() -> Path:
    """Get the runtime directory path (PID files)."""
    return get_taskwarden_home() / "run"


def get_pid_path() -> Path:
    return get_run_path() / "scheduler.pid"


def ensure_taskwarden_home() -> Path:
    """Create the home directory layout if needed and return it."""
    home = get_taskwarden_home()
    for path in (home, get_work_dir(), get_logs_path(), get_run_path()):
        path.mkdir(parents=True, exist_ok=True)
    return home
