"""Live cron triggers.

A trigger is the in-memory schedule handle of a cron task: an asyncio task
that sleeps until the next occurrence of the expression and fires a callback.

Cron expressions are evaluated in the configured local timezone, then
converted to UTC for sleeping. This keeps "0 8 * * *" at 8 AM local time
across DST changes.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from croniter import croniter

from taskwarden.scheduling.types import get_zone

logger = logging.getLogger(__name__)

# Sleep in slices so clock jumps (suspend/resume) are noticed
MAX_SLEEP_SECONDS = 60.0


def next_fire_time(
    expression: str,
    timezone: str,
    after: datetime | None = None,
) -> datetime:
    """Next occurrence of ``expression`` strictly after ``after``, in UTC."""
    tz = get_zone(timezone)
    base = (after or datetime.now(UTC)).astimezone(tz)
    next_local = croniter(expression, base).get_next(datetime)
    return next_local.astimezone(UTC)


class CronTrigger:
    """Fires ``callback`` on every occurrence of a cron expression."""

    def __init__(
        self,
        expression: str,
        timezone: str,
        callback: Callable[[], None],
        *,
        name: str = "",
    ) -> None:
        # Fail fast on a bad expression rather than inside the loop
        croniter(expression)
        self._expression = expression
        self._timezone = timezone
        self._callback = callback
        self._name = name
        self._task: asyncio.Task | None = None
        self._next_fire: datetime | None = None

    @property
    def expression(self) -> str:
        return self._expression

    @property
    def timezone(self) -> str:
        return self._timezone

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_fire_time(self, after: datetime | None = None) -> datetime:
        if after is None and self.running and self._next_fire is not None:
            return self._next_fire
        return next_fire_time(self._expression, self._timezone, after)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"cron:{self._name}"
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._next_fire = None

    async def _run(self) -> None:
        while True:
            fire_at = next_fire_time(self._expression, self._timezone)
            self._next_fire = fire_at
            logger.debug(
                "cron_trigger_armed",
                extra={
                    "trigger.name": self._name,
                    "schedule.cron": self._expression,
                    "schedule.next_fire": fire_at.isoformat(),
                },
            )
            while (remaining := (fire_at - datetime.now(UTC)).total_seconds()) > 0:
                await asyncio.sleep(min(remaining, MAX_SLEEP_SECONDS))
            try:
                self._callback()
            except Exception as e:
                logger.error(
                    "cron_trigger_callback_failed",
                    extra={"trigger.name": self._name, "error.message": str(e)},
                )
