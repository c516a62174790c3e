"""Scheduler types.

Public types:
- TaskType: cron (recurring) or once (single absolute instant)
- TaskDefinition: A persisted, user-authored task from the config document
- TaskRuntimeState: In-memory state of a registered task
- RunningTask: Transient state of an in-flight execution
- ExecutionRecord: One finished execution attempt
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, tzinfo
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:
    from taskwarden.scheduling.triggers import CronTrigger

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Shanghai"
DEFAULT_TIMEOUT_MS = 8 * 60 * 60 * 1000  # 8 hours
MAX_OUTPUT_CHARS = 10_000


class TaskType(StrEnum):
    CRON = "cron"
    ONCE = "once"


def get_zone(name: str | None) -> tzinfo:
    """Resolve an IANA timezone name, falling back to UTC."""
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning("invalid_timezone", extra={"schedule.timezone": name})
        return UTC


def parse_instant(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp to an aware UTC instant.

    Naive timestamps are read as UTC. The configured timezone never shifts
    an instant; it only drives cron evaluation and display.
    Returns None when the value does not parse.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def isoformat(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def truncate_output(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    """Keep the tail of long process output."""
    if len(text) <= limit:
        return text
    return "...[truncated]\n" + text[-limit:]


# Keys of the JSON document, mapped to dataclass attribute names
_KEY_MAP = {
    "name": "name",
    "description": "description",
    "type": "type",
    "schedule": "schedule",
    "script": "script",
    "args": "args",
    "enabled": "enabled",
    "timeout": "timeout",
    "retryOnFailure": "retry_on_failure",
    "maxRetries": "max_retries",
    "tags": "tags",
    "archivedAt": "archived_at",
}


@dataclass
class TaskDefinition:
    """A task definition from the config document.

    The task id is the key of the ``tasks`` map, not a field.
    """

    name: str
    schedule: str
    script: str
    type: TaskType = TaskType.CRON
    description: str = ""
    args: list[str] = field(default_factory=list)
    enabled: bool = True
    timeout: int = DEFAULT_TIMEOUT_MS  # milliseconds
    # Advisory only; execution never retries
    retry_on_failure: bool = False
    max_retries: int = 0
    tags: list[str] = field(default_factory=list)
    archived_at: datetime | None = None
    # Preserve unknown fields
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_once(self) -> bool:
        return self.type == TaskType.ONCE

    def scheduled_at(self) -> datetime | None:
        """The absolute UTC instant of a once task, or None."""
        if not self.is_once:
            return None
        return parse_instant(self.schedule)

    def merged(self, patch: dict[str, Any]) -> "TaskDefinition":
        """Return a copy with document-style ``patch`` keys applied."""
        data = self.to_dict()
        data.update(patch)
        if not patch.get("type"):
            data["type"] = self.type.value
        return TaskDefinition.from_dict(data)

    def with_enabled(self, enabled: bool) -> "TaskDefinition":
        return replace(self, enabled=enabled)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON document shape (camelCase keys)."""
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "type": self.type.value,
                "name": self.name,
                "description": self.description,
                "schedule": self.schedule,
                "script": self.script,
                "args": list(self.args),
                "enabled": self.enabled,
                "timeout": self.timeout,
                "retryOnFailure": self.retry_on_failure,
                "maxRetries": self.max_retries,
                "tags": list(self.tags),
            }
        )
        if self.archived_at:
            data["archivedAt"] = self.archived_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskDefinition":
        """Parse a definition from the document, filling defaults.

        Callers are expected to validate first; this only normalizes shape.
        """
        raw_type = data.get("type") or TaskType.CRON.value
        try:
            task_type = TaskType(raw_type)
        except ValueError as e:
            raise ValueError(f"invalid task type: {raw_type}") from e

        archived_at = None
        if raw_archived := data.get("archivedAt"):
            archived_at = parse_instant(str(raw_archived))

        enabled = data.get("enabled")
        extra = {k: v for k, v in data.items() if k not in _KEY_MAP}

        return cls(
            name=str(data.get("name") or ""),
            schedule=str(data.get("schedule") or ""),
            script=str(data.get("script") or ""),
            type=task_type,
            description=str(data.get("description") or ""),
            args=[str(a) for a in data.get("args") or []],
            enabled=True if enabled is None else bool(enabled),
            timeout=int(data.get("timeout") or DEFAULT_TIMEOUT_MS),
            retry_on_failure=bool(data.get("retryOnFailure", False)),
            max_retries=int(data.get("maxRetries") or 0),
            tags=[str(t) for t in data.get("tags") or []],
            archived_at=archived_at,
            extra=extra,
        )


@dataclass
class TaskRuntimeState:
    """In-memory state of a registered task. Never persisted."""

    task_id: str
    definition: TaskDefinition
    trigger: "CronTrigger | None" = None
    last_run: datetime | None = None
    run_count: int = 0
    error_count: int = 0

    def next_run(self) -> datetime | None:
        if self.trigger is not None:
            return self.trigger.next_fire_time()
        return None


@dataclass
class RunningTask:
    """An in-flight execution, tracked in the executor's running-set."""

    task_id: str
    execution_id: str
    start_time: datetime
    progress: str = "starting"
    pid: str | int | None = None
    process_id: str | None = None

    def run_time_ms(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        return int((now - self.start_time).total_seconds() * 1000)


@dataclass(frozen=True)
class ExecutionRecord:
    """One finished execution attempt."""

    execution_id: str
    start_time: datetime
    end_time: datetime
    duration: int  # milliseconds
    success: bool
    exit_code: int
    error: str | None = None
    output: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "duration": self.duration,
            "success": self.success,
            "exitCode": self.exit_code,
            "error": self.error,
            "output": self.output,
        }
