"""Server command for running the scheduler in the foreground."""

import asyncio
import logging
import os
import signal
import time
from pathlib import Path
from typing import Annotated

import typer

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        settings_path: Annotated[
            Path | None,
            typer.Option(
                "--settings",
                "-s",
                help="Path to settings file (default: $TASKWARDEN_HOME/config.toml)",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option(
                "--log-level",
                "-l",
                help="Log level (DEBUG, INFO, WARNING, ERROR)",
            ),
        ] = None,
    ) -> None:
        """Run the scheduler until interrupted (SIGINT/SIGTERM)."""
        try:
            asyncio.run(_run_scheduler(settings_path, log_level))
        except KeyboardInterrupt:
            # Use print here since logging may already be torn down
            print("\nScheduler stopped")


async def _run_scheduler(settings_path: Path | None, log_level: str | None) -> None:
    from taskwarden.cli.console import console
    from taskwarden.cli.runtime import load_settings_or_exit, open_engine
    from taskwarden.config.paths import (
        ensure_taskwarden_home,
        get_logs_path,
        get_pid_path,
    )
    from taskwarden.logging import configure_logging
    from taskwarden.process import WatchdogChangeWatcher

    ensure_taskwarden_home()
    settings = load_settings_or_exit(settings_path)
    configure_logging(
        level=(log_level or settings.logging.level).upper(),
        use_rich=True,
        log_to_file=settings.logging.to_file,
        logs_dir=get_logs_path(),
        retention_days=settings.logging.retention_days,
    )

    console.print(f"[bold]Loading {settings.config_path}...[/bold]")
    engine = open_engine(settings, change_watcher=WatchdogChangeWatcher())

    pid_path = get_pid_path()
    pid_path.write_text(f"{os.getpid()}\n{time.time()}\n")

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await engine.start()
        status = engine.get_status()
        console.print(
            f"[bold green]Scheduler running: {status['tasksCount']} tasks "
            f"({status['timezone']})[/bold green]"
        )
        await shutdown.wait()
    finally:
        await engine.stop()
        pid_path.unlink(missing_ok=True)
        logger.info("scheduler_shutdown_complete")
