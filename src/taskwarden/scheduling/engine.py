"""Scheduler engine.

The engine wires the store, registry, executor, archive manager, poller and
config watcher together and exposes the command/query surface a presentation
layer binds to. All of it runs on one asyncio event loop; only script
execution happens out of process.
"""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator, Coroutine, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from taskwarden.process.changes import ChangeWatcher
from taskwarden.process.supervisor import ProcessSupervisor, SubprocessSupervisor
from taskwarden.scheduling.archive import ArchiveManager
from taskwarden.scheduling.errors import (
    ConfigValidationError,
    SchedulerError,
    TaskExistsError,
    TaskNotFoundError,
    TaskTypeError,
)
from taskwarden.scheduling.events import (
    EventBus,
    EventHandler,
    SchedulerEvent,
    SchedulerEventType,
)
from taskwarden.scheduling.executor import TaskExecutor
from taskwarden.scheduling.history import DEFAULT_HISTORY_LIMIT, HistoryStore
from taskwarden.scheduling.poller import DEFAULT_POLL_INTERVAL, DueTaskPoller
from taskwarden.scheduling.registry import TaskRegistry
from taskwarden.scheduling.store import ConfigStore
from taskwarden.scheduling.types import (
    DEFAULT_TIMEOUT_MS,
    TaskDefinition,
    TaskType,
    isoformat,
)
from taskwarden.scheduling.validator import resolve_script_path, validate_task
from taskwarden.scheduling.watcher import DEFAULT_DEBOUNCE_SECONDS, ConfigWatcher

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_DELAY = 1.0

# Defaults filled in for optional fields omitted on add
TASK_DEFAULTS: dict[str, Any] = {
    "type": TaskType.CRON.value,
    "description": "",
    "args": [],
    "enabled": True,
    "timeout": DEFAULT_TIMEOUT_MS,
    "retryOnFailure": False,
    "maxRetries": 0,
    "tags": [],
}


class SchedulerEngine:
    """Persistent task scheduler.

    Example:
        engine = SchedulerEngine(
            ConfigStore(Path("config/scheduler-config.json")),
            SubprocessSupervisor(),
            WatchdogChangeWatcher(),
        )

        @engine.subscribe
        def on_event(event):
            print(event.type, event.task_id)

        await engine.start()
    """

    def __init__(
        self,
        store: ConfigStore,
        supervisor: ProcessSupervisor,
        change_watcher: ChangeWatcher | None = None,
        *,
        events: EventBus | None = None,
        base_dir: Path | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        reload_debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        archive_delay: float = DEFAULT_ARCHIVE_DELAY,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self._store = store
        self._base_dir = base_dir
        self._archive_delay = archive_delay
        self._events = events or EventBus()
        self._history = HistoryStore(history_limit)
        self._registry = TaskRegistry(self.dispatch, lambda: self._store.timezone)
        self._executor = TaskExecutor(
            supervisor,
            self._registry,
            self._history,
            self._events,
            base_dir=base_dir,
            on_once_success=self._schedule_archive,
        )
        self._archive = ArchiveManager(store, self._registry, self._events)
        self._poller = DueTaskPoller(
            self._registry,
            dispatch=self.dispatch,
            is_running=self._executor.is_running,
            poll_interval=poll_interval,
        )
        self._watcher: ConfigWatcher | None = None
        if change_watcher is not None:
            self._watcher = ConfigWatcher(
                change_watcher,
                store.path,
                self.reload_config,
                debounce=reload_debounce,
                is_stale=store.is_stale,
            )

        self._running = False
        self._start_time: datetime | None = None
        self._started_monotonic: float | None = None
        self._pending_archives: dict[str, asyncio.TimerHandle] = {}
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        *,
        supervisor: ProcessSupervisor | None = None,
        change_watcher: ChangeWatcher | None = None,
    ) -> "SchedulerEngine":
        """Build an engine from TaskwardenSettings."""
        work_dir = Path(settings.work_dir)
        store = ConfigStore(settings.config_path, base_dir=work_dir)
        if supervisor is None:
            supervisor = SubprocessSupervisor(cwd=work_dir)
        return cls(
            store,
            supervisor,
            change_watcher if settings.watch_config else None,
            base_dir=work_dir,
            poll_interval=settings.poll_interval,
            reload_debounce=settings.reload_debounce,
            archive_delay=settings.archive_delay,
            history_limit=settings.history_limit,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    @property
    def executor(self) -> TaskExecutor:
        return self._executor

    @property
    def poller(self) -> DueTaskPoller:
        return self._poller

    @property
    def watcher(self) -> ConfigWatcher | None:
        return self._watcher

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the document if needed and start scheduling.

        Raises:
            ConfigValidationError: If the initial document is invalid.
        """
        if self._running:
            logger.warning("scheduler_already_running")
            return

        if not self._store.loaded:
            self._store.load()

        # Overdue one-shot tasks must not fire as a backlog on restart
        self._archive.archive_expired_once_tasks()

        if self._watcher is not None:
            self._watcher.start()

        self._running = True
        self._start_time = datetime.now(UTC)
        self._started_monotonic = time.monotonic()
        self._registry.rebuild(self._store.tasks(), start_triggers=True)
        await self._poller.start()

        logger.info(
            "scheduler_started",
            extra={
                "process.pid": os.getpid(),
                "tasks.count": len(self._registry),
                "schedule.timezone": self._store.timezone,
            },
        )
        self._events.emit(
            SchedulerEventType.SCHEDULER_STARTED,
            tasks_count=len(self._registry),
        )

    async def stop(self) -> None:
        """Stop triggers, poller and watcher. In-flight executions continue."""
        if not self._running:
            return
        self._running = False
        self._registry.stop_all()
        await self._poller.stop()
        if self._watcher is not None:
            self._watcher.stop()

        self.flush_pending_archives()

        logger.info(
            "scheduler_stopped",
            extra={"tasks.running": len(self._executor.running)},
        )
        self._events.emit(SchedulerEventType.SCHEDULER_STOPPED)

    async def reload_config(self) -> bool:
        """Re-read the document and rebuild the registry.

        The new document is validated before anything is torn down; on
        failure the current document and registrations stay live.
        """
        try:
            loaded = self._store.read_document()
        except ConfigValidationError as e:
            logger.error(
                "config_reload_failed",
                extra={"error.message": str(e), "config.errors": e.errors},
            )
            self._events.emit(
                SchedulerEventType.CONFIG_RELOADED,
                success=False,
                error=str(e),
                errors=e.errors,
            )
            return False

        self._registry.stop_all()
        self._store.commit(loaded)
        self._registry.rebuild(loaded.tasks, start_triggers=self._running)

        logger.info(
            "config_reloaded",
            extra={
                "tasks.count": len(self._registry),
                "config.warnings_count": len(self._store.warnings),
            },
        )
        self._events.emit(
            SchedulerEventType.CONFIG_RELOADED,
            success=True,
            tasks_count=len(self._registry),
            warnings=self._store.warnings,
        )
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_task(self, task_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Add a task. Optional fields are filled with defaults.

        Raises:
            TaskExistsError: If the id is already active or archived.
            ConfigValidationError: If the definition is invalid.
        """
        if not task_id:
            raise ConfigValidationError("task id is required", errors=["task id is required"])
        if self._store.has_task(task_id):
            raise TaskExistsError(task_id)
        if self._store.is_archived(task_id):
            raise TaskExistsError(task_id, "completed tasks")

        document = {**TASK_DEFAULTS, **data}
        definition, warnings = self._validated(task_id, document)

        self._store.update_config_file(task_id, definition)
        self._store.set_task_warnings(task_id, warnings)
        if definition.enabled and self._running:
            self._registry.register(task_id, definition, start_trigger=True)

        logger.info(
            "task_added",
            extra={"task.id": task_id, "task.name": definition.name},
        )
        details = self.get_task_details(task_id)
        self._events.emit(SchedulerEventType.TASK_ADDED, task_id, task=details)
        return details

    def update_task(self, task_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Merge ``data`` over the persisted definition.

        Raises:
            TaskNotFoundError: If the id is not in the active set.
            ConfigValidationError: If the merged definition is invalid.
        """
        existing = self._require_task(task_id)
        document = {**existing.to_dict(), **data}
        definition, warnings = self._validated(task_id, document)

        self._store.update_config_file(task_id, definition)
        self._store.set_task_warnings(task_id, warnings)
        self._registry.unregister(task_id)
        if definition.enabled and self._running:
            self._registry.register(task_id, definition, start_trigger=True)

        logger.info("task_updated", extra={"task.id": task_id})
        details = self.get_task_details(task_id)
        self._events.emit(SchedulerEventType.TASK_UPDATED, task_id, task=details)
        return details

    def delete_task(self, task_id: str) -> None:
        """Remove a task from the active set and forget its history.

        Raises:
            TaskNotFoundError: If the id is not in the active set.
        """
        self._require_task(task_id)
        self._registry.unregister(task_id)
        self._cancel_pending_archive(task_id)
        self._store.remove_task(task_id)
        self._history.clear(task_id)
        logger.info("task_deleted", extra={"task.id": task_id})
        self._events.emit(SchedulerEventType.TASK_REMOVED, task_id)

    def toggle_task(self, task_id: str, enabled: bool) -> dict[str, Any]:
        """Enable or disable a task. Toggling to the current state is a no-op.

        Raises:
            TaskNotFoundError: If the id is not in the active set.
        """
        definition = self._require_task(task_id)
        if definition.enabled != enabled:
            definition = definition.with_enabled(enabled)
            self._store.update_config_file(task_id, definition)

        if enabled:
            if self._running:
                self._registry.register(task_id, definition, start_trigger=True)
        else:
            self._registry.unregister(task_id)

        logger.info("task_toggled", extra={"task.id": task_id, "task.enabled": enabled})
        self._events.emit(SchedulerEventType.TASK_TOGGLED, task_id, enabled=enabled)
        return self.get_task_details(task_id)

    async def run_task(self, task_id: str) -> bool:
        """Run a task now, bypassing its schedule.

        Returns False when the run was a no-op (already running, or the
        script is missing). Execution failures are recorded, not raised.

        Raises:
            TaskNotFoundError: If the id is not in the active set, or is a
                once task that already succeeded and waits to be archived.
        """
        if task_id in self._pending_archives:
            raise TaskNotFoundError(task_id)
        state = self._registry.get(task_id)
        definition = state.definition if state else self._require_task(task_id)
        logger.info("task_run_requested", extra={"task.id": task_id})
        return await self._executor.execute(task_id, definition)

    def cancel_task(self, task_id: str) -> bool:
        """Free the task's running slot and ask the supervisor to terminate it."""
        return self._executor.cancel(task_id)

    def archive_task(self, task_id: str) -> dict[str, Any]:
        """Archive a one-shot task.

        Raises:
            TaskNotFoundError: If the id is not in the active set.
            TaskTypeError: If the task is not a once task.
        """
        definition = self._require_task(task_id)
        if not definition.is_once:
            raise TaskTypeError(f"only once tasks can be archived: {task_id}")
        self._cancel_pending_archive(task_id)
        archived = self._archive.archive_task(task_id)
        return {"id": task_id, **archived.to_dict()}

    def dispatch(self, task_id: str) -> None:
        """Execute a registered task in the background (trigger/poller path)."""
        state = self._registry.get(task_id)
        if state is None:
            logger.debug("dispatch_skipped_unregistered", extra={"task.id": task_id})
            return
        self._spawn(self._executor.execute(task_id, state.definition), f"run:{task_id}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_tasks(self) -> list[dict[str, Any]]:
        return [self.get_task_details(task_id) for task_id in self._store.task_ids()]

    def list_archived_tasks(self) -> list[dict[str, Any]]:
        """Archived tasks, most recently archived first."""
        archived = sorted(
            self._store.completed_tasks().items(),
            key=lambda item: item[1].archived_at or datetime.min.replace(tzinfo=UTC),
            reverse=True,
        )
        return [{"id": task_id, **definition.to_dict()} for task_id, definition in archived]

    def get_task_details(self, task_id: str) -> dict[str, Any]:
        """Persisted fields plus runtime state of an active task.

        Raises:
            TaskNotFoundError: If the id is not in the active set.
        """
        definition = self._require_task(task_id)
        state = self._registry.get(task_id)
        running = self._executor.get_running(task_id)

        if definition.is_once:
            next_run = definition.scheduled_at()
        else:
            next_run = state.next_run() if state else None

        return {
            "id": task_id,
            **definition.to_dict(),
            "registered": state is not None,
            "lastRun": isoformat(state.last_run) if state else None,
            "nextRun": isoformat(next_run) if definition.enabled else None,
            "runCount": state.run_count if state else 0,
            "errorCount": state.error_count if state else 0,
            "isRunning": running is not None,
            "runTime": running.run_time_ms() if running else None,
            "progress": running.progress if running else None,
            "pid": running.pid if running else None,
            "scriptExists": resolve_script_path(definition.script, self._base_dir)
            is not None,
            "warnings": self._store.get_task_warnings(task_id),
        }

    def get_task_history(
        self,
        task_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Execution records of a task, newest first.

        Raises:
            TaskNotFoundError: If the id is unknown and has no history.
        """
        if not (
            self._store.has_task(task_id)
            or self._store.is_archived(task_id)
            or self._history.count(task_id)
        ):
            raise TaskNotFoundError(task_id, "tasks or history")
        return [r.to_dict() for r in self._history.get(task_id, limit, offset)]

    def get_status(self) -> dict[str, Any]:
        uptime = None
        if self._running and self._started_monotonic is not None:
            uptime = round(time.monotonic() - self._started_monotonic, 3)

        tasks = []
        for state in self._registry:
            tasks.append(
                {
                    "id": state.task_id,
                    "name": state.definition.name,
                    "type": state.definition.type.value,
                    "schedule": state.definition.schedule,
                    "enabled": state.definition.enabled,
                    "lastRun": isoformat(state.last_run),
                    "nextRun": isoformat(
                        state.next_run()
                        or state.definition.scheduled_at()
                    ),
                    "runCount": state.run_count,
                    "errorCount": state.error_count,
                    "isRunning": self._executor.is_running(state.task_id),
                }
            )

        return {
            "isRunning": self._running,
            "pid": os.getpid(),
            "startTime": isoformat(self._start_time),
            "uptime": uptime,
            "tasksCount": len(self._registry),
            "runningTasksCount": len(self._executor.running),
            "timezone": self._store.timezone,
            "tasks": tasks,
            "warningsCount": len(self._store.warnings),
        }

    def get_config_warnings(self) -> dict[str, Any]:
        return {
            "warnings": self._store.warnings,
            "taskWarnings": self._store.task_warnings,
        }

    def subscribe(self, handler: EventHandler) -> EventHandler:
        """Register an event handler. Usable as a decorator."""
        return self._events.subscribe(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        self._events.unsubscribe(handler)

    def events(self) -> AsyncIterator[SchedulerEvent]:
        return self._events.stream()

    def flush_pending_archives(self) -> list[str]:
        """Archive completed one-shot tasks now instead of after the delay."""
        flushed = list(self._pending_archives)
        for task_id in flushed:
            self._pending_archives.pop(task_id).cancel()
            self._archive_completed(task_id)
        return flushed

    async def wait_idle(self) -> None:
        """Wait for background executions to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_task(self, task_id: str) -> TaskDefinition:
        definition = self._store.get_task(task_id)
        if definition is None:
            raise TaskNotFoundError(task_id)
        return definition

    def _validated(
        self, task_id: str, document: dict[str, Any]
    ) -> tuple[TaskDefinition, list[str]]:
        result = validate_task(document, base_dir=self._base_dir)
        if result.errors:
            raise ConfigValidationError(
                f"invalid task {task_id}: {', '.join(result.errors)}",
                errors=result.errors,
                warnings=result.warnings,
            )
        # Definitions are stored without archive bookkeeping
        document.pop("archivedAt", None)
        return TaskDefinition.from_dict(document), result.warnings

    def _schedule_archive(self, task_id: str) -> None:
        # Stop polling for it now; archive after listeners saw the completion
        self._registry.unregister(task_id)
        self._cancel_pending_archive(task_id)
        loop = asyncio.get_running_loop()
        self._pending_archives[task_id] = loop.call_later(
            self._archive_delay, self._archive_completed, task_id
        )

    def _cancel_pending_archive(self, task_id: str) -> None:
        if handle := self._pending_archives.pop(task_id, None):
            handle.cancel()

    def _archive_completed(self, task_id: str) -> None:
        self._pending_archives.pop(task_id, None)
        if not self._store.has_task(task_id):
            return
        try:
            self._archive.archive_task(task_id)
        except SchedulerError as e:
            logger.error(
                "task_archive_failed",
                extra={"task.id": task_id, "error.message": str(e)},
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        if error := task.exception():
            logger.error(
                "background_task_failed",
                extra={"task.name": task.get_name(), "error.message": str(error)},
            )
