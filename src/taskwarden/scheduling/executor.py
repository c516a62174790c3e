"""Task execution.

The executor runs one task at a time per task id. It delegates the actual
process to a ProcessSupervisor and turns the outcome into an ExecutionRecord,
counters and events. A failing script is a recorded outcome, never an
exception that escapes into the scheduler loop.
"""

import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path

from taskwarden.process.supervisor import ProcessSupervisor
from taskwarden.scheduling.events import EventBus, SchedulerEventType
from taskwarden.scheduling.history import HistoryStore
from taskwarden.scheduling.registry import TaskRegistry
from taskwarden.scheduling.types import (
    ExecutionRecord,
    RunningTask,
    TaskDefinition,
    TaskRuntimeState,
    truncate_output,
)
from taskwarden.scheduling.validator import resolve_script_path

logger = logging.getLogger(__name__)

# Called after a successful once-task execution
OnceSuccessCallback = Callable[[str], None]


class TaskExecutor:
    """Runs tasks through a ProcessSupervisor with single-flight per task id.

    The running-set is checked and claimed synchronously, before the first
    await, so two dispatches of the same id on the event loop can never both
    pass the guard.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        registry: TaskRegistry,
        history: HistoryStore,
        events: EventBus,
        *,
        base_dir: Path | None = None,
        on_once_success: OnceSuccessCallback | None = None,
    ) -> None:
        self._supervisor = supervisor
        self._registry = registry
        self._history = history
        self._events = events
        self._base_dir = base_dir
        self._on_once_success = on_once_success
        self._running: dict[str, RunningTask] = {}

    @property
    def running(self) -> Mapping[str, RunningTask]:
        return dict(self._running)

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running

    def get_running(self, task_id: str) -> RunningTask | None:
        return self._running.get(task_id)

    async def execute(self, task_id: str, definition: TaskDefinition) -> bool:
        """Run a task once. Returns True if an execution actually took place."""
        if task_id in self._running:
            logger.warning(
                "task_already_running",
                extra={"task.id": task_id, "task.name": definition.name},
            )
            return False

        script_path = resolve_script_path(definition.script, self._base_dir)
        if script_path is None:
            logger.warning(
                "task_skipped_script_missing",
                extra={"task.id": task_id, "task.script": definition.script},
            )
            self._events.emit(
                SchedulerEventType.TASK_EXECUTION_SKIPPED,
                task_id,
                reason="script_not_found",
                script=definition.script,
                message=f"script file not found: {definition.script}",
            )
            return False

        # Manual runs of an unregistered (disabled) task keep detached counters
        state = self._registry.get(task_id) or TaskRuntimeState(
            task_id=task_id, definition=definition
        )

        start_time = datetime.now(UTC)
        running = RunningTask(
            task_id=task_id,
            execution_id=f"{task_id}_{int(time.time() * 1000)}",
            start_time=start_time,
            progress="starting",
        )
        self._running[task_id] = running

        try:
            logger.info(
                "task_execution_started",
                extra={"task.id": task_id, "task.name": definition.name},
            )
            self._events.emit(
                SchedulerEventType.TASK_EXECUTION_STARTED,
                task_id,
                execution_id=running.execution_id,
                start_time=start_time.isoformat(),
            )
            self.update_progress(task_id, "running script")

            try:
                process = await self._supervisor.start_script(
                    script_path=script_path,
                    args=list(definition.args),
                    timeout_ms=definition.timeout,
                    task_id=task_id,
                )
                running.pid = process.pid
                running.process_id = process.process_id
                result = await process.result
            except Exception as e:
                self._record_failure(state, running, e)
                return True

            self._record_success(state, running, result.exit_code, result.stdout)
            return True
        finally:
            # Only release our own slot; a cancelled run may have been replaced
            if self._running.get(task_id) is running:
                del self._running[task_id]

    def update_progress(self, task_id: str, progress: str) -> None:
        running = self._running.get(task_id)
        if running is None:
            return
        running.progress = progress
        self._events.emit(
            SchedulerEventType.TASK_EXECUTION_PROGRESS,
            task_id,
            progress=progress,
            run_time=running.run_time_ms(),
            execution_id=running.execution_id,
        )

    def cancel(self, task_id: str) -> bool:
        """Release the task's running slot and ask the supervisor to kill it.

        Returns False if the task was not running.
        """
        running = self._running.pop(task_id, None)
        if running is None:
            self._events.emit(
                SchedulerEventType.TASK_CANCELLED,
                task_id,
                success=False,
                error="task is not running",
            )
            return False

        terminated = False
        if running.process_id is not None:
            try:
                terminated = self._supervisor.terminate(running.process_id)
            except Exception as e:
                logger.warning(
                    "task_terminate_failed",
                    extra={"task.id": task_id, "error.message": str(e)},
                )

        logger.info(
            "task_cancelled",
            extra={"task.id": task_id, "process.terminated": terminated},
        )
        self._events.emit(
            SchedulerEventType.TASK_CANCELLED,
            task_id,
            success=True,
            execution_id=running.execution_id,
            terminated=terminated,
        )
        return True

    def _is_current(self, running: RunningTask) -> bool:
        return self._running.get(running.task_id) is running

    def _record_success(
        self,
        state: TaskRuntimeState,
        running: RunningTask,
        exit_code: int,
        output: str,
    ) -> None:
        if not self._is_current(running):
            logger.info("cancelled_execution_settled", extra={"task.id": state.task_id})
            return

        end_time = datetime.now(UTC)
        duration = _duration_ms(running.start_time, end_time)
        state.last_run = end_time
        state.run_count += 1
        self._history.add(
            state.task_id,
            ExecutionRecord(
                execution_id=running.execution_id,
                start_time=running.start_time,
                end_time=end_time,
                duration=duration,
                success=True,
                exit_code=exit_code,
                error=None,
                output=truncate_output(output),
            ),
        )
        logger.info(
            "task_execution_completed",
            extra={
                "task.id": state.task_id,
                "task.duration_ms": duration,
                "process.exit_code": exit_code,
            },
        )
        self._events.emit(
            SchedulerEventType.TASK_EXECUTION_COMPLETED,
            state.task_id,
            execution_id=running.execution_id,
            duration=duration,
            exit_code=exit_code,
            success=True,
        )

        if state.definition.is_once and self._on_once_success is not None:
            self._on_once_success(state.task_id)

    def _record_failure(
        self,
        state: TaskRuntimeState,
        running: RunningTask,
        error: Exception,
    ) -> None:
        if not self._is_current(running):
            logger.info("cancelled_execution_settled", extra={"task.id": state.task_id})
            return

        end_time = datetime.now(UTC)
        duration = _duration_ms(running.start_time, end_time)
        exit_code = getattr(error, "exit_code", -1)
        output = getattr(error, "stderr", "") or str(error)
        state.last_run = end_time
        state.error_count += 1
        self._history.add(
            state.task_id,
            ExecutionRecord(
                execution_id=running.execution_id,
                start_time=running.start_time,
                end_time=end_time,
                duration=duration,
                success=False,
                exit_code=exit_code,
                error=str(error),
                output=truncate_output(output),
            ),
        )
        # A failing task is not a scheduler error
        logger.warning(
            "task_execution_failed",
            extra={
                "task.id": state.task_id,
                "task.duration_ms": duration,
                "process.exit_code": exit_code,
                "error.message": str(error),
            },
        )
        self._events.emit(
            SchedulerEventType.TASK_EXECUTION_FAILED,
            state.task_id,
            execution_id=running.execution_id,
            duration=duration,
            exit_code=exit_code,
            error=str(error),
            success=False,
        )


def _duration_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)
