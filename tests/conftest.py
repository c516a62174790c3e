"""Shared test fixtures and factories."""

import asyncio
import json
from collections.abc import AsyncGenerator, Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from taskwarden.config.paths import get_taskwarden_home
from taskwarden.process.changes import (
    DEFAULT_EXCLUDE_PATTERNS,
    ChangeType,
    FileChange,
    is_excluded,
)
from taskwarden.process.errors import ProcessExecutionError
from taskwarden.process.supervisor import ProcessResult, ScriptProcess
from taskwarden.scheduling.engine import SchedulerEngine
from taskwarden.scheduling.store import ConfigStore

# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def taskwarden_home(tmp_path: Path, monkeypatch) -> Path:
    """Isolate TASKWARDEN_HOME for every test."""
    home = tmp_path / "home"
    monkeypatch.setenv("TASKWARDEN_HOME", str(home))
    get_taskwarden_home.cache_clear()
    yield home
    get_taskwarden_home.cache_clear()


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})


# =============================================================================
# Scheduler document
# =============================================================================


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Scheduler working directory with a couple of scripts."""
    path = tmp_path / "work"
    scripts = path / "scripts"
    scripts.mkdir(parents=True)
    (scripts / "job.py").write_text("print('job ran')\n")
    (scripts / "other.py").write_text("print('other ran')\n")
    return path


@pytest.fixture
def config_path(work_dir: Path) -> Path:
    return work_dir / "config" / "scheduler-config.json"


def make_task(**overrides: Any) -> dict[str, Any]:
    """A valid cron task definition in document shape."""
    task = {
        "type": "cron",
        "name": "Job",
        "description": "",
        "schedule": "*/5 * * * *",
        "script": "scripts/job.py",
        "args": [],
        "enabled": True,
        "timeout": 60000,
        "retryOnFailure": False,
        "maxRetries": 0,
        "tags": [],
    }
    task.update(overrides)
    return task


def make_document(
    tasks: dict[str, dict[str, Any]] | None = None,
    completed: dict[str, dict[str, Any]] | None = None,
    timezone: str = "UTC",
) -> dict[str, Any]:
    return {
        "version": "1.0.0",
        "lastUpdated": "2026-01-01T00:00:00+00:00",
        "settings": {"timezone": timezone},
        "tasks": tasks if tasks is not None else {},
        "completed_tasks": completed if completed is not None else {},
    }


def write_document(path: Path, document: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2))
    return path


def read_document(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text())


# =============================================================================
# Collaborator fakes
# =============================================================================


@dataclass
class StartedScript:
    script_path: Path
    args: list[str]
    timeout_ms: int | None
    task_id: str
    process_id: str


class FakeSupervisor:
    """ProcessSupervisor that never spawns anything.

    Scripts succeed with ``stdout`` unless ``error`` is set. When ``hold`` is
    set, every script blocks until ``release()`` is called.
    """

    def __init__(self) -> None:
        self.started: list[StartedScript] = []
        self.terminated: list[str] = []
        self.exit_code = 0
        self.stdout = "ok"
        self.error: Exception | None = None
        self.hold = False
        self._gate = asyncio.Event()
        self._results: dict[str, asyncio.Future] = {}

    async def start_script(
        self,
        *,
        script_path: Path,
        args: list[str],
        timeout_ms: int | None,
        task_id: str,
    ) -> ScriptProcess:
        process_id = f"{task_id}-{len(self.started) + 1}"
        self.started.append(
            StartedScript(script_path, list(args), timeout_ms, task_id, process_id)
        )
        result = asyncio.ensure_future(self._result(process_id))
        self._results[process_id] = result
        return ScriptProcess(
            process_id=process_id, result=result, pid=1000 + len(self.started)
        )

    def terminate(self, process_id: str) -> bool:
        result = self._results.get(process_id)
        if result is None or result.done():
            return False
        self.terminated.append(process_id)
        return True

    def release(self) -> None:
        self._gate.set()

    async def _result(self, process_id: str) -> ProcessResult:
        if self.hold:
            while not self._gate.is_set() and process_id not in self.terminated:
                await asyncio.sleep(0.01)
        if process_id in self.terminated:
            raise ProcessExecutionError("terminated", exit_code=-15)
        if self.error is not None:
            raise self.error
        return ProcessResult(exit_code=self.exit_code, stdout=self.stdout, stderr="")


class FakeWatchHandle:
    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


@dataclass
class _Watch:
    directory: Path
    on_change: Callable[[FileChange], None]
    exclude_patterns: tuple[str, ...]
    on_error: Callable[[Exception], None] | None
    handle: FakeWatchHandle = field(default_factory=FakeWatchHandle)


class FakeChangeWatcher:
    """ChangeWatcher driven by the test through ``emit()``."""

    def __init__(self) -> None:
        self.watches: list[_Watch] = []
        self.fail_with: Exception | None = None

    def watch(
        self,
        directory: Path,
        on_change: Callable[[FileChange], None],
        *,
        exclude_patterns: Iterable[str] = DEFAULT_EXCLUDE_PATTERNS,
        on_error: Callable[[Exception], None] | None = None,
    ) -> FakeWatchHandle:
        if self.fail_with is not None:
            raise self.fail_with
        watch = _Watch(directory, on_change, tuple(exclude_patterns), on_error)
        self.watches.append(watch)
        return watch.handle

    @property
    def active(self) -> list[_Watch]:
        return [w for w in self.watches if not w.handle.stopped]

    def emit(self, full_path: Path, change_type: ChangeType = ChangeType.CHANGE) -> None:
        for watch in self.active:
            relative = str(full_path.relative_to(watch.directory))
            if is_excluded(relative, watch.exclude_patterns):
                continue
            watch.on_change(FileChange(change_type, relative, full_path))

    def fail(self, error: Exception) -> None:
        for watch in self.active:
            if watch.on_error is not None:
                watch.on_error(error)


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def change_watcher() -> FakeChangeWatcher:
    return FakeChangeWatcher()


@pytest.fixture
def store(config_path: Path, work_dir: Path) -> ConfigStore:
    return ConfigStore(config_path, base_dir=work_dir)


@pytest.fixture
async def engine_factory(
    config_path: Path,
    work_dir: Path,
    supervisor: FakeSupervisor,
    change_watcher: FakeChangeWatcher,
) -> AsyncGenerator[Callable[..., SchedulerEngine], None]:
    """Build engines over the test document; stops them on teardown."""
    engines: list[SchedulerEngine] = []

    def make(document: dict[str, Any] | None = None, **kwargs: Any) -> SchedulerEngine:
        if document is not None:
            write_document(config_path, document)
        kwargs.setdefault("archive_delay", 0.01)
        kwargs.setdefault("reload_debounce", 0.01)
        engine = SchedulerEngine(
            ConfigStore(config_path, base_dir=work_dir),
            supervisor,
            change_watcher,
            base_dir=work_dir,
            **kwargs,
        )
        engines.append(engine)
        return engine

    yield make

    supervisor.release()
    for engine in engines:
        await engine.stop()
        await engine.wait_idle()
