"""In-memory registry of enabled tasks.

A task id is either unregistered (absent) or registered-idle: present with a
runtime state and, for cron tasks, a live trigger. Running is tracked by the
executor on top of this. Disabled tasks are never registered.
"""

import logging
from collections.abc import Callable, Iterator, Mapping

from taskwarden.scheduling.triggers import CronTrigger
from taskwarden.scheduling.types import TaskDefinition, TaskRuntimeState, TaskType

logger = logging.getLogger(__name__)

# Called with the task id when a cron trigger fires
FireCallback = Callable[[str], None]


class TaskRegistry:
    """Owns registration, deregistration and trigger lifecycle."""

    def __init__(
        self,
        on_fire: FireCallback,
        timezone: Callable[[], str],
    ) -> None:
        self._on_fire = on_fire
        self._timezone = timezone
        self._states: dict[str, TaskRuntimeState] = {}

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[TaskRuntimeState]:
        return iter(list(self._states.values()))

    def ids(self) -> list[str]:
        return list(self._states)

    def get(self, task_id: str) -> TaskRuntimeState | None:
        return self._states.get(task_id)

    def once_tasks(self) -> list[TaskRuntimeState]:
        return [
            state
            for state in self._states.values()
            if state.definition.type == TaskType.ONCE
        ]

    def register(
        self,
        task_id: str,
        definition: TaskDefinition,
        *,
        start_trigger: bool,
    ) -> TaskRuntimeState | None:
        """Register an enabled task. Returns None for a disabled definition.

        Registering an id that is already registered is a no-op returning the
        existing state; callers that want new definitions to take effect
        unregister first.
        """
        if not definition.enabled:
            logger.debug("task_registration_skipped", extra={"task.id": task_id})
            return None

        if existing := self._states.get(task_id):
            if start_trigger and existing.trigger and not existing.trigger.running:
                existing.trigger.start()
            return existing

        trigger = None
        if definition.type == TaskType.CRON:
            trigger = CronTrigger(
                definition.schedule,
                self._timezone(),
                lambda: self._on_fire(task_id),
                name=task_id,
            )

        state = TaskRuntimeState(task_id=task_id, definition=definition, trigger=trigger)
        self._states[task_id] = state
        if trigger is not None and start_trigger:
            trigger.start()

        logger.info(
            "task_registered",
            extra={
                "task.id": task_id,
                "task.name": definition.name,
                "task.type": definition.type.value,
                "schedule": definition.schedule,
            },
        )
        return state

    def unregister(self, task_id: str) -> TaskRuntimeState | None:
        """Stop the trigger and drop runtime state. No-op if absent."""
        state = self._states.pop(task_id, None)
        if state is None:
            return None
        if state.trigger is not None:
            state.trigger.stop()
        logger.info("task_unregistered", extra={"task.id": task_id})
        return state

    def rebuild(
        self,
        tasks: Mapping[str, TaskDefinition],
        *,
        start_triggers: bool,
    ) -> None:
        """Clear the registry and register every enabled task."""
        self.clear()
        for task_id, definition in tasks.items():
            if not definition.enabled:
                logger.info(
                    "disabled_task_skipped",
                    extra={"task.id": task_id, "task.name": definition.name},
                )
                continue
            try:
                self.register(task_id, definition, start_trigger=start_triggers)
            except Exception as e:
                logger.error(
                    "task_registration_failed",
                    extra={"task.id": task_id, "error.message": str(e)},
                )

    def stop_all(self) -> None:
        """Stop every live trigger, keeping registrations."""
        for state in self._states.values():
            if state.trigger is not None:
                state.trigger.stop()

    def clear(self) -> None:
        self.stop_all()
        self._states.clear()
