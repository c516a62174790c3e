"""Config watcher: hot reload on configuration file changes.

Change notifications may arrive on a watcher thread. They are marshalled
onto the event loop, filtered to the configuration file and debounced, so
a half-written file is never read.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from taskwarden.process.changes import (
    DEFAULT_EXCLUDE_PATTERNS,
    ChangeWatcher,
    FileChange,
    WatchHandle,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0

ReloadCallback = Callable[[], Awaitable[object] | None]


class ConfigWatcher:
    """Triggers a reload callback when the config file changes.

    Example:
        watcher = ConfigWatcher(
            WatchdogChangeWatcher(),
            store.path,
            engine.reload_config,
            is_stale=store.is_stale,
        )
        watcher.start()
    """

    def __init__(
        self,
        change_watcher: ChangeWatcher,
        config_path: Path,
        on_reload: ReloadCallback,
        *,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        is_stale: Callable[[], bool] | None = None,
    ) -> None:
        self._change_watcher = change_watcher
        self._config_path = config_path
        self._on_reload = on_reload
        self._debounce = debounce
        self._is_stale = is_stale
        self._handle: WatchHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._reloads: set[asyncio.Task] = set()

    @property
    def watching(self) -> bool:
        return self._handle is not None

    @property
    def pending(self) -> bool:
        """True while a debounced reload is scheduled."""
        return self._timer is not None

    def start(self) -> None:
        """Subscribe to the config directory. Must be called on the event loop."""
        if self._handle is not None:
            return
        self._loop = asyncio.get_running_loop()
        directory = self._config_path.parent
        try:
            self._handle = self._change_watcher.watch(
                directory,
                self._on_change,
                exclude_patterns=DEFAULT_EXCLUDE_PATTERNS,
                on_error=self._on_error,
            )
        except Exception as e:
            # The watcher only triggers reloads; the engine runs without it
            logger.error(
                "config_watch_failed",
                extra={"file.path": str(directory), "error.message": str(e)},
            )
            return
        logger.info("config_watch_started", extra={"file.path": str(self._config_path)})

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._handle is not None:
            try:
                self._handle.stop()
            except Exception as e:
                logger.warning("config_watch_stop_failed", extra={"error.message": str(e)})
            self._handle = None
            logger.info("config_watch_stopped")

    def restart(self) -> None:
        self.stop()
        self.start()

    def _on_change(self, change: FileChange) -> None:
        if change.full_path.name != self._config_path.name:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        logger.debug(
            "config_change_detected",
            extra={"file.path": change.path, "change.type": change.type.value},
        )
        loop.call_soon_threadsafe(self._schedule_reload)

    def _on_error(self, error: Exception) -> None:
        logger.error("config_watch_error", extra={"error.message": str(error)})

    def _schedule_reload(self) -> None:
        # Each change restarts the debounce window
        if self._timer is not None:
            self._timer.cancel()
        assert self._loop is not None
        self._timer = self._loop.call_later(self._debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        if self._is_stale is not None and not self._is_stale():
            logger.debug("config_change_ignored_own_write")
            return
        logger.info("config_file_changed", extra={"file.path": str(self._config_path)})
        try:
            result = self._on_reload()
        except Exception as e:
            logger.error("config_reload_error", extra={"error.message": str(e)})
            return
        if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
            task = asyncio.ensure_future(result)
            self._reloads.add(task)
            task.add_done_callback(self._reload_done)

    def _reload_done(self, task: asyncio.Future) -> None:
        self._reloads.discard(task)
        if task.cancelled():
            return
        if error := task.exception():
            logger.error("config_reload_error", extra={"error.message": str(error)})
