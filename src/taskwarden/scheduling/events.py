"""Scheduler event stream.

Every state change the presentation layer cares about goes through
EventBus.emit(), the single dispatch point. Event names are a StrEnum so
that a typo is an AttributeError instead of a silently unheard event.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class SchedulerEventType(StrEnum):
    TASK_ADDED = "task_added"
    TASK_UPDATED = "task_updated"
    TASK_REMOVED = "task_removed"
    TASK_TOGGLED = "task_toggled"
    TASK_ARCHIVED = "task_archived"
    TASK_CANCELLED = "task_cancelled"
    CONFIG_RELOADED = "config_reloaded"
    TASK_EXECUTION_STARTED = "task_execution_started"
    TASK_EXECUTION_PROGRESS = "task_execution_progress"
    TASK_EXECUTION_COMPLETED = "task_execution_completed"
    TASK_EXECUTION_FAILED = "task_execution_failed"
    TASK_EXECUTION_SKIPPED = "task_execution_skipped"
    SCHEDULER_STARTED = "scheduler_started"
    SCHEDULER_STOPPED = "scheduler_stopped"


@dataclass(frozen=True)
class SchedulerEvent:
    type: SchedulerEventType
    task_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.task_id is not None:
            payload["taskId"] = self.task_id
        payload.update(self.data)
        return payload


EventHandler = Callable[[SchedulerEvent], Any]


class EventBus:
    """Fan-out of scheduler events to subscribers.

    Example:
        bus = EventBus()

        @bus.subscribe
        def on_event(event):
            print(event.type, event.task_id)

        async for event in bus.stream():
            ...
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._queues: list[asyncio.Queue[SchedulerEvent]] = []

    def subscribe(self, handler: EventHandler) -> EventHandler:
        """Register a handler. Usable as a decorator."""
        self._handlers.append(handler)
        return handler

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(
        self,
        event_type: SchedulerEventType,
        task_id: str | None = None,
        **data: Any,
    ) -> SchedulerEvent:
        event = SchedulerEvent(type=event_type, task_id=task_id, data=data)
        logger.debug(
            "scheduler_event",
            extra={"event.type": event_type.value, "task.id": task_id},
        )
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        result.close()
                        raise
                    loop.create_task(result)
            except Exception as e:
                logger.error(
                    "event_handler_error",
                    extra={"event.type": event_type.value, "error.message": str(e)},
                )
        for queue in list(self._queues):
            queue.put_nowait(event)
        return event

    async def stream(self) -> AsyncIterator[SchedulerEvent]:
        """Yield events as they are emitted until the consumer stops."""
        queue: asyncio.Queue[SchedulerEvent] = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(queue)
