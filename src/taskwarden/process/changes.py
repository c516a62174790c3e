"""File-change notifications for a directory.

The scheduler only needs to know when its configuration file changes. It
consumes a ChangeWatcher; WatchdogChangeWatcher is the default backed by a
watchdog observer.
"""

import fnmatch
import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Protocol

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATTERNS = ("**/*.tmp", "**/*.bak", "**/*~", "**/.*")


class ChangeType(StrEnum):
    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"


@dataclass(frozen=True)
class FileChange:
    type: ChangeType
    # Path relative to the watched directory
    path: str
    full_path: Path


ChangeCallback = Callable[[FileChange], None]
ErrorCallback = Callable[[Exception], None]


class WatchHandle(Protocol):
    def stop(self) -> None: ...


class ChangeWatcher(Protocol):
    """Interface the scheduler uses to follow a directory."""

    def watch(
        self,
        directory: Path,
        on_change: ChangeCallback,
        *,
        exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
        on_error: ErrorCallback | None = None,
    ) -> WatchHandle: ...


def is_excluded(path: str, patterns: Iterable[str]) -> bool:
    """Match a relative path against ``**/``-style exclusion globs."""
    name = Path(path).name
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatch(name, pattern[3:]):
            return True
    return False


class _ChangeHandler(FileSystemEventHandler):
    def __init__(
        self,
        directory: Path,
        on_change: ChangeCallback,
        exclude_patterns: tuple[str, ...],
        on_error: ErrorCallback | None,
    ) -> None:
        self._directory = directory
        self._on_change = on_change
        self._exclude_patterns = exclude_patterns
        self._on_error = on_error

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        try:
            for change in self._translate(event):
                if is_excluded(change.path, self._exclude_patterns):
                    continue
                self._on_change(change)
        except Exception as e:
            logger.error("change_handler_error", extra={"error.message": str(e)})
            if self._on_error is not None:
                self._on_error(e)

    def _translate(self, event: FileSystemEvent) -> list[FileChange]:
        if event.event_type == "created":
            return [self._change(ChangeType.ADD, event.src_path)]
        if event.event_type == "modified":
            return [self._change(ChangeType.CHANGE, event.src_path)]
        if event.event_type == "deleted":
            return [self._change(ChangeType.UNLINK, event.src_path)]
        if isinstance(event, FileSystemMovedEvent):
            # Atomic replace shows up as a move onto the target file
            return [
                self._change(ChangeType.UNLINK, event.src_path),
                self._change(ChangeType.ADD, event.dest_path),
            ]
        return []

    def _change(self, change_type: ChangeType, raw_path: str | bytes) -> FileChange:
        full_path = Path(os.fsdecode(raw_path))
        try:
            relative = full_path.relative_to(self._directory)
        except ValueError:
            relative = Path(full_path.name)
        return FileChange(type=change_type, path=str(relative), full_path=full_path)


class _ObserverHandle:
    def __init__(self, observer: BaseObserver, directory: Path) -> None:
        self._observer = observer
        self._directory = directory

    def stop(self) -> None:
        if not self._observer.is_alive():
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        logger.debug("directory_watch_stopped", extra={"file.path": str(self._directory)})


class WatchdogChangeWatcher:
    """ChangeWatcher backed by a (non-recursive) watchdog observer.

    Callbacks run on the observer thread.
    """

    def __init__(self, observer_factory: Callable[[], BaseObserver] = Observer) -> None:
        self._observer_factory = observer_factory

    def watch(
        self,
        directory: Path,
        on_change: ChangeCallback,
        *,
        exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
        on_error: ErrorCallback | None = None,
    ) -> WatchHandle:
        directory = directory.resolve()
        handler = _ChangeHandler(
            directory, on_change, tuple(exclude_patterns), on_error
        )
        observer = self._observer_factory()
        observer.schedule(handler, str(directory), recursive=False)
        observer.daemon = True
        observer.start()
        logger.debug("directory_watch_started", extra={"file.path": str(directory)})
        return _ObserverHandle(observer, directory)
