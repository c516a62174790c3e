"""Validation of task definitions and configuration documents.

Hard errors block a load or a mutation. Warnings (currently only a missing
script file) are reported but never block: a script may be deployed after
the task that runs it.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from croniter import croniter

from taskwarden.scheduling.types import TaskType

REQUIRED_FIELDS = ("name", "schedule", "script")

SCRIPT_NOT_FOUND = "script file not found"


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    # task id -> warnings, only populated by validate_config
    task_warnings: dict[str, list[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def script_candidates(script: str, base_dir: Path | None = None) -> list[Path]:
    """Candidate locations for a script path, in probe order."""
    path = Path(script)
    if path.is_absolute():
        return [path]

    base = (base_dir or Path.cwd()).resolve()
    candidates = [
        base / path,
        base.parent / path,
        Path("/") / path,
    ]
    # scripts/... is relative to the application root
    if script.startswith("scripts/"):
        candidates.append(Path.cwd() / path)
    return candidates


def resolve_script_path(script: str, base_dir: Path | None = None) -> Path | None:
    """Return the first existing file for ``script``, or None."""
    if not script:
        return None
    for candidate in script_candidates(script, base_dir):
        if candidate.is_file():
            return candidate
    return None


def is_valid_cron(expression: str) -> bool:
    try:
        return bool(croniter.is_valid(expression))
    except Exception:
        return False


def is_valid_instant(value: str) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        datetime.fromisoformat(value.strip())
    except ValueError:
        return False
    return True


def validate_task(
    definition: Mapping[str, Any],
    *,
    strict_script_check: bool = False,
    base_dir: Path | None = None,
) -> ValidationResult:
    """Validate a single task definition in document shape."""
    result = ValidationResult()

    if not isinstance(definition, Mapping):
        result.errors.append("task definition must be an object")
        return result

    for name in REQUIRED_FIELDS:
        if not definition.get(name):
            result.errors.append(f"missing required field: {name}")

    raw_type = definition.get("type") or TaskType.CRON.value
    if raw_type not in (TaskType.CRON.value, TaskType.ONCE.value):
        result.errors.append(
            f"invalid task type: {raw_type}, must be 'cron' or 'once'"
        )

    schedule = definition.get("schedule")
    if schedule:
        if raw_type == TaskType.CRON.value:
            if not isinstance(schedule, str) or not is_valid_cron(schedule):
                result.errors.append(f"invalid cron expression: {schedule}")
        elif raw_type == TaskType.ONCE.value:
            if not is_valid_instant(schedule):
                result.errors.append(
                    f"invalid timestamp: {schedule}, "
                    "must be a valid ISO-8601 timestamp"
                )

    script = definition.get("script")
    if script:
        if not isinstance(script, str):
            result.errors.append("script must be a string path")
        elif resolve_script_path(script, base_dir) is None:
            message = f"{SCRIPT_NOT_FOUND}: {script}"
            if strict_script_check:
                result.errors.append(message)
            else:
                result.warnings.append(message)

    for list_field in ("args", "tags"):
        value = definition.get(list_field)
        if value is not None and not _is_list_of_str(value):
            result.errors.append(f"{list_field} must be a list of strings")

    description = definition.get("description")
    if description is not None and not isinstance(description, str):
        result.errors.append("description must be a string")

    if not _is_optional_count(definition.get("timeout")):
        result.errors.append("timeout must be a non-negative integer (ms)")
    if not _is_optional_count(definition.get("maxRetries")):
        result.errors.append("maxRetries must be a non-negative integer")

    for flag in ("enabled", "retryOnFailure"):
        value = definition.get(flag)
        if value is not None and not isinstance(value, bool):
            result.errors.append(f"{flag} must be true or false")

    return result


def validate_config(
    document: Any,
    *,
    strict_script_check: bool = False,
    base_dir: Path | None = None,
) -> ValidationResult:
    """Validate a whole configuration document."""
    result = ValidationResult()

    if not isinstance(document, Mapping):
        result.errors.append("configuration must be an object")
        return result

    tasks = document.get("tasks")
    if not isinstance(tasks, Mapping):
        result.errors.append("configuration must contain a tasks object")
        return result

    settings = document.get("settings")
    if settings is not None:
        if not isinstance(settings, Mapping):
            result.errors.append("settings must be an object")
        elif not isinstance(settings.get("timezone") or "", str):
            result.errors.append("settings.timezone must be a string")

    completed = document.get("completed_tasks")
    if completed is not None and not isinstance(completed, Mapping):
        result.errors.append("completed_tasks must be an object")
    elif completed:
        # An id lives in exactly one of the two maps
        for task_id in sorted(tasks.keys() & completed.keys()):
            result.errors.append(
                f"task {task_id}: present in both tasks and completed_tasks"
            )

    for task_id, definition in tasks.items():
        task_result = validate_task(
            definition,
            strict_script_check=strict_script_check,
            base_dir=base_dir,
        )
        if task_result.errors:
            result.errors.append(f"task {task_id}: {', '.join(task_result.errors)}")
        if task_result.warnings:
            result.task_warnings[task_id] = task_result.warnings
            result.warnings.append(
                f"task {task_id}: {', '.join(task_result.warnings)}"
            )

    return result


def _is_optional_count(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_list_of_str(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)
