"""Due-task poller: the dispatch path for one-shot tasks.

Once tasks have no native trigger. The poller sweeps the registry on a fixed
cadence and dispatches every registered once task whose instant has passed.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from taskwarden.scheduling.registry import TaskRegistry

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0

# Heartbeat every 60 polls (~1 hour at the default interval)
HEARTBEAT_INTERVAL = 60


class DueTaskPoller:
    """Polls registered once tasks and dispatches the due ones.

    Example:
        poller = DueTaskPoller(
            registry,
            dispatch=engine.dispatch,
            is_running=executor.is_running,
        )
        await poller.start()
    """

    def __init__(
        self,
        registry: TaskRegistry,
        *,
        dispatch: Callable[[str], None],
        is_running: Callable[[str], bool],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._registry = registry
        self._dispatch = dispatch
        self._is_running = is_running
        self._poll_interval = poll_interval
        self._running = False
        self._task: asyncio.Task | None = None
        self._poll_count = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info(
            "due_task_poller_started",
            extra={"poll.interval": self._poll_interval},
        )
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("due_task_poller_stopped")

    def check_due(self, now: datetime | None = None) -> list[str]:
        """Dispatch every due once task that is not already running."""
        now = now or datetime.now(UTC)
        dispatched = []
        for state in self._registry.once_tasks():
            if not state.definition.enabled or self._is_running(state.task_id):
                continue
            scheduled = state.definition.scheduled_at()
            if scheduled is None or now < scheduled:
                continue
            logger.info(
                "once_task_due",
                extra={
                    "task.id": state.task_id,
                    "schedule.instant": scheduled.isoformat(),
                },
            )
            self._dispatch(state.task_id)
            dispatched.append(state.task_id)
        return dispatched

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self._poll_count += 1
                if self._poll_count % HEARTBEAT_INTERVAL == 0:
                    logger.info(
                        "due_task_poller_heartbeat",
                        extra={
                            "poll.count": self._poll_count,
                            "tasks.count": len(self._registry),
                        },
                    )
                self.check_due()
            except Exception as e:
                logger.error("due_task_check_error", extra={"error.message": str(e)})
            await asyncio.sleep(self._poll_interval)
