"""Scheduler error types.

Validation errors are raised synchronously to the caller. Execution errors
never leave the executor; they are recorded as failed executions instead.
"""

from taskwarden.process.errors import ProcessExecutionError, ProcessTimeoutError

__all__ = [
    "ConfigValidationError",
    "ProcessExecutionError",
    "ProcessTimeoutError",
    "SchedulerError",
    "TaskExistsError",
    "TaskNotFoundError",
    "TaskTypeError",
]


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class ConfigValidationError(SchedulerError, ValueError):
    """A configuration document or task definition failed validation."""

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        warnings: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = list(errors or [])
        self.warnings = list(warnings or [])


class TaskNotFoundError(SchedulerError, KeyError):
    """The task id is not present where the operation expected it."""

    def __init__(self, task_id: str, where: str = "active set") -> None:
        super().__init__(f"task {task_id!r} not found in {where}")
        self.task_id = task_id

    def __str__(self) -> str:
        # KeyError quotes its message; keep the plain text
        return str(self.args[0])


class TaskExistsError(SchedulerError, ValueError):
    """A task with this id already exists."""

    def __init__(self, task_id: str, where: str | None = None) -> None:
        suffix = f" in {where}" if where else ""
        super().__init__(f"task id already exists{suffix}: {task_id}")
        self.task_id = task_id


class TaskTypeError(SchedulerError, ValueError):
    """The operation is not valid for this task type."""
