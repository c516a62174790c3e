"""Scheduling subsystem: persistent cron and one-shot tasks.

Public API:
- SchedulerEngine: Facade owning lifecycle, commands and queries
- ConfigStore: Reads, validates and atomically persists the task document
- TaskRegistry: Registered tasks and their live cron triggers
- TaskExecutor: Single-flight execution through a ProcessSupervisor
- ArchiveManager: Moves one-shot tasks into the archive
- DueTaskPoller: Dispatches due one-shot tasks
- ConfigWatcher: Debounced hot reload on config file changes

Types:
- TaskDefinition: A persisted task definition
- TaskRuntimeState: In-memory state of a registered task
- ExecutionRecord: One finished execution attempt
- SchedulerEvent / SchedulerEventType: Typed event stream
"""

from taskwarden.scheduling.archive import ArchiveManager
from taskwarden.scheduling.engine import SchedulerEngine
from taskwarden.scheduling.errors import (
    ConfigValidationError,
    SchedulerError,
    TaskExistsError,
    TaskNotFoundError,
    TaskTypeError,
)
from taskwarden.scheduling.events import EventBus, SchedulerEvent, SchedulerEventType
from taskwarden.scheduling.executor import TaskExecutor
from taskwarden.scheduling.history import HistoryStore
from taskwarden.scheduling.poller import DueTaskPoller
from taskwarden.scheduling.registry import TaskRegistry
from taskwarden.scheduling.store import ConfigStore
from taskwarden.scheduling.triggers import CronTrigger, next_fire_time
from taskwarden.scheduling.types import (
    ExecutionRecord,
    RunningTask,
    TaskDefinition,
    TaskRuntimeState,
    TaskType,
)
from taskwarden.scheduling.validator import (
    ValidationResult,
    validate_config,
    validate_task,
)
from taskwarden.scheduling.watcher import ConfigWatcher

__all__ = [
    "ArchiveManager",
    "ConfigStore",
    "ConfigValidationError",
    "ConfigWatcher",
    "CronTrigger",
    "DueTaskPoller",
    "EventBus",
    "ExecutionRecord",
    "HistoryStore",
    "RunningTask",
    "SchedulerEngine",
    "SchedulerError",
    "SchedulerEvent",
    "SchedulerEventType",
    "TaskDefinition",
    "TaskExecutor",
    "TaskExistsError",
    "TaskNotFoundError",
    "TaskRegistry",
    "TaskRuntimeState",
    "TaskType",
    "TaskTypeError",
    "ValidationResult",
    "next_fire_time",
    "validate_config",
    "validate_task",
]
