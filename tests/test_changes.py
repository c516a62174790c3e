"""Tests for the watchdog-backed change watcher."""

import threading
import time
from pathlib import Path

import pytest
from watchdog.observers.polling import PollingObserver

from taskwarden.process.changes import (
    ChangeType,
    FileChange,
    WatchdogChangeWatcher,
    is_excluded,
)


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


class TestExclusions:
    @pytest.mark.parametrize(
        "path",
        ["a.tmp", "sub/a.tmp", "a.bak", "config.json~", ".hidden", "sub/.hidden"],
    )
    def test_excluded(self, path: str):
        assert is_excluded(path, ("**/*.tmp", "**/*.bak", "**/*~", "**/.*"))

    def test_not_excluded(self):
        assert not is_excluded(
            "scheduler-config.json", ("**/*.tmp", "**/*.bak", "**/*~", "**/.*")
        )


class TestWatchdogChangeWatcher:
    @pytest.fixture
    def watcher(self) -> WatchdogChangeWatcher:
        return WatchdogChangeWatcher(lambda: PollingObserver(timeout=0.1))

    def test_reports_changes(self, watcher: WatchdogChangeWatcher, tmp_path: Path):
        changes: list[FileChange] = []
        lock = threading.Lock()

        def on_change(change: FileChange) -> None:
            with lock:
                changes.append(change)

        target = tmp_path / "scheduler-config.json"
        handle = watcher.watch(tmp_path, on_change)
        # Let the observer take its initial snapshot
        time.sleep(0.3)
        try:
            target.write_text("{}")
            assert _wait_for(lambda: any(c.path == target.name for c in changes))
            added = next(c for c in changes if c.path == target.name)
            assert added.full_path == target.resolve()
            assert added.type in (ChangeType.ADD, ChangeType.CHANGE)

            (tmp_path / "ignored.tmp").write_text("x")
            target.unlink()
            assert _wait_for(
                lambda: any(c.type == ChangeType.UNLINK for c in changes)
            )
        finally:
            handle.stop()

        assert all(c.path != "ignored.tmp" for c in changes)

    def test_stop_is_idempotent(self, watcher: WatchdogChangeWatcher, tmp_path: Path):
        handle = watcher.watch(tmp_path, lambda change: None)
        handle.stop()
        handle.stop()
