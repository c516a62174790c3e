"""Out-of-process collaborators of the scheduler.

- ProcessSupervisor / SubprocessSupervisor: run task scripts as child processes
- ChangeWatcher / WatchdogChangeWatcher: directory change notifications
"""

from taskwarden.process.changes import (
    ChangeType,
    ChangeWatcher,
    FileChange,
    WatchdogChangeWatcher,
    WatchHandle,
)
from taskwarden.process.errors import ProcessExecutionError, ProcessTimeoutError
from taskwarden.process.supervisor import (
    ProcessResult,
    ProcessSupervisor,
    ScriptProcess,
    SubprocessSupervisor,
)

__all__ = [
    "ChangeType",
    "ChangeWatcher",
    "FileChange",
    "ProcessExecutionError",
    "ProcessResult",
    "ProcessSupervisor",
    "ProcessTimeoutError",
    "ScriptProcess",
    "SubprocessSupervisor",
    "WatchHandle",
    "WatchdogChangeWatcher",
]
