"""Archiving of one-shot tasks.

Archived tasks move from the ``tasks`` map to ``completed_tasks`` with an
``archivedAt`` timestamp. Instants are compared in UTC; the configured
timezone only decides how naive schedules are read.
"""

import logging
from datetime import UTC, datetime

from taskwarden.scheduling.events import EventBus, SchedulerEventType
from taskwarden.scheduling.registry import TaskRegistry
from taskwarden.scheduling.store import ConfigStore
from taskwarden.scheduling.types import TaskDefinition

logger = logging.getLogger(__name__)


class ArchiveManager:
    def __init__(
        self,
        store: ConfigStore,
        registry: TaskRegistry,
        events: EventBus,
    ) -> None:
        self._store = store
        self._registry = registry
        self._events = events

    def archive_task(self, task_id: str, now: datetime | None = None) -> TaskDefinition:
        """Move a task from the active set into the archive.

        Raises:
            TaskNotFoundError: If the id is not in the active set.
        """
        archived_at = now or datetime.now(UTC)
        # Raises before touching the registry when the id is unknown
        definition = self._store.archive_task(task_id, archived_at)
        self._registry.unregister(task_id)

        logger.info(
            "task_archived",
            extra={"task.id": task_id, "task.name": definition.name},
        )
        self._events.emit(
            SchedulerEventType.TASK_ARCHIVED,
            task_id,
            archived_at=archived_at.isoformat(),
            definition=definition.to_dict(),
        )
        self._events.emit(SchedulerEventType.TASK_REMOVED, task_id)
        return definition

    def expired_once_tasks(self, now: datetime | None = None) -> list[str]:
        """Ids of active once tasks whose instant has already passed."""
        now = now or datetime.now(UTC)
        expired = []
        for task_id, definition in self._store.tasks().items():
            scheduled = definition.scheduled_at()
            if scheduled is not None and scheduled < now:
                expired.append(task_id)
        return expired

    def archive_expired_once_tasks(self, now: datetime | None = None) -> list[str]:
        """Archive every overdue once task. Returns the archived ids."""
        now = now or datetime.now(UTC)
        archived = []
        for task_id in self.expired_once_tasks(now):
            self.archive_task(task_id, now)
            archived.append(task_id)
        if archived:
            logger.info(
                "expired_once_tasks_archived",
                extra={"tasks.count": len(archived), "task.ids": archived},
            )
        return archived
