"""Shared bootstrap helpers for CLI entrypoints."""

from pathlib import Path

import typer

from taskwarden.cli.console import bullet_list, error
from taskwarden.config import SettingsError, TaskwardenSettings, load_settings
from taskwarden.process.changes import ChangeWatcher
from taskwarden.scheduling import ConfigValidationError, SchedulerEngine


def load_settings_or_exit(path: Path | None) -> TaskwardenSettings:
    """Load service settings, exiting with status 1 on failure."""
    try:
        return load_settings(path)
    except FileNotFoundError as e:
        error(str(e))
        raise typer.Exit(1) from None
    except SettingsError as e:
        error(str(e))
        raise typer.Exit(1) from None


def open_engine(
    settings: TaskwardenSettings,
    *,
    change_watcher: ChangeWatcher | None = None,
) -> SchedulerEngine:
    """Build an engine and load its document, exiting on a hard error.

    The engine is not started; commands that only edit the document leave
    scheduling to a running ``taskwarden serve``, which hot-reloads.
    """
    engine = SchedulerEngine.from_settings(settings, change_watcher=change_watcher)
    try:
        engine.store.load()
    except ConfigValidationError as e:
        error(str(e))
        bullet_list(e.errors)
        raise typer.Exit(1) from None
    return engine
