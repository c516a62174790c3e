"""Task management commands."""

import asyncio
from pathlib import Path
from typing import Annotated, Any

import click
import typer

from taskwarden.cli.console import (
    confirm_or_cancel,
    console,
    create_table,
    dim,
    error,
    format_countdown,
    format_enabled,
    success,
    warning,
)

SettingsOption = Annotated[
    Path | None,
    typer.Option(
        "--settings",
        "-s",
        help="Path to settings file (default: $TASKWARDEN_HOME/config.toml)",
    ),
]


def register(app: typer.Typer) -> None:
    """Register the task and archived commands."""

    @app.command()
    def task(
        action: Annotated[
            str | None,
            typer.Argument(
                help="Action: list, show, add, enable, disable, delete, archive, run"
            ),
        ] = None,
        task_id: Annotated[
            str | None,
            typer.Argument(help="Task ID"),
        ] = None,
        name: Annotated[
            str | None,
            typer.Option("--name", "-n", help="Task name (add)"),
        ] = None,
        schedule: Annotated[
            str | None,
            typer.Option(
                "--schedule",
                help="Cron expression, or ISO-8601 timestamp for --type once (add)",
            ),
        ] = None,
        script: Annotated[
            str | None,
            typer.Option("--script", help="Script path (add)"),
        ] = None,
        task_type: Annotated[
            str,
            typer.Option("--type", "-t", help="Task type: cron or once (add)"),
        ] = "cron",
        description: Annotated[
            str,
            typer.Option("--description", "-d", help="Task description (add)"),
        ] = "",
        args: Annotated[
            list[str] | None,
            typer.Option("--arg", help="Script argument, repeatable (add)"),
        ] = None,
        tags: Annotated[
            list[str] | None,
            typer.Option("--tag", help="Tag, repeatable (add)"),
        ] = None,
        timeout: Annotated[
            int | None,
            typer.Option("--timeout", help="Timeout in milliseconds (add)"),
        ] = None,
        disabled: Annotated[
            bool,
            typer.Option("--disabled", help="Add the task disabled (add)"),
        ] = False,
        force: Annotated[
            bool,
            typer.Option("--force", "-f", help="Skip confirmation (delete)"),
        ] = False,
        settings_path: SettingsOption = None,
    ) -> None:
        """Manage scheduled tasks.

        Commands edit the scheduler document; a running 'taskwarden serve'
        picks the change up through hot reload.

        Examples:
            taskwarden task list
            taskwarden task show backup
            taskwarden task add backup --name Backup --schedule "0 3 * * *" --script scripts/backup.sh
            taskwarden task add report --type once --schedule 2026-01-01T09:00:00 --script scripts/report.py
            taskwarden task disable backup
            taskwarden task run backup
        """
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from taskwarden.cli.runtime import load_settings_or_exit, open_engine
        from taskwarden.scheduling import SchedulerError

        if action not in _ACTIONS:
            error(f"Unknown action: {action}")
            console.print(f"Valid actions: {', '.join(_ACTIONS)}")
            raise typer.Exit(1)

        if action != "list" and not task_id:
            error(f"Task ID is required for {action}")
            raise typer.Exit(1)

        engine = open_engine(load_settings_or_exit(settings_path))

        try:
            if action == "list":
                _task_list(engine)
            elif action == "show":
                _task_show(engine, task_id)
            elif action == "add":
                data: dict[str, Any] = {
                    "type": task_type,
                    "name": name,
                    "schedule": schedule,
                    "script": script,
                    "description": description,
                    "args": list(args or []),
                    "tags": list(tags or []),
                    "enabled": not disabled,
                }
                if timeout is not None:
                    data["timeout"] = timeout
                details = engine.add_task(task_id, data)
                success(f"Added task {task_id}")
                for message in details["warnings"]:
                    warning(f"Warning: {message}")
            elif action in ("enable", "disable"):
                engine.toggle_task(task_id, action == "enable")
                success(f"Task {task_id} {action}d")
            elif action == "delete":
                if confirm_or_cancel(f"Delete task {task_id}?", force):
                    engine.delete_task(task_id)
                    success(f"Deleted task {task_id}")
            elif action == "archive":
                engine.archive_task(task_id)
                success(f"Archived task {task_id}")
            elif action == "run":
                _task_run(engine, task_id)
        except SchedulerError as e:
            error(str(e))
            raise typer.Exit(1) from None

    @app.command()
    def archived(settings_path: SettingsOption = None) -> None:
        """List archived (completed one-shot) tasks."""
        from taskwarden.cli.runtime import load_settings_or_exit, open_engine

        engine = open_engine(load_settings_or_exit(settings_path))
        tasks = engine.list_archived_tasks()
        if not tasks:
            warning("No archived tasks")
            return

        table = create_table(
            None,
            [
                ("ID", "dim"),
                ("Name", ""),
                ("Schedule", ""),
                ("Archived", "cyan"),
            ],
        )
        for item in tasks:
            table.add_row(
                item["id"],
                item["name"],
                item["schedule"],
                item.get("archivedAt") or "-",
            )
        console.print(table)
        dim(f"Total: {len(tasks)} archived task(s)")


_ACTIONS = ("list", "show", "add", "enable", "disable", "delete", "archive", "run")


def _task_list(engine) -> None:
    tasks = engine.list_tasks()
    if not tasks:
        warning("No tasks found")
        return

    table = create_table(
        None,
        [
            ("ID", "dim"),
            ("Type", ""),
            ("Name", ""),
            ("Schedule", ""),
            ("Enabled", ""),
            ("Next Run", ""),
        ],
    )
    for item in tasks:
        name = item["name"]
        if not item["scriptExists"]:
            name += " [yellow](script missing)[/yellow]"
        table.add_row(
            item["id"],
            item["type"],
            name,
            item["schedule"],
            format_enabled(item["enabled"]),
            format_countdown(item["nextRun"]) if item["enabled"] else "[dim]-[/dim]",
        )
    console.print(table)
    dim(f"Total: {len(tasks)} task(s)")


def _task_show(engine, task_id: str) -> None:
    details = engine.get_task_details(task_id)
    table = create_table(task_id, [("Field", "cyan"), ("Value", "")])
    for key in (
        "name",
        "description",
        "type",
        "schedule",
        "script",
        "args",
        "enabled",
        "timeout",
        "tags",
        "nextRun",
        "scriptExists",
    ):
        value = details.get(key)
        if isinstance(value, list):
            value = ", ".join(value) or "-"
        table.add_row(key, "-" if value in (None, "") else str(value))
    console.print(table)
    for message in details["warnings"]:
        warning(f"Warning: {message}")


def _task_run(engine, task_id: str) -> None:
    async def run() -> bool:
        try:
            return await engine.run_task(task_id)
        finally:
            # The loop closes after this run; archive a finished once task now
            engine.flush_pending_archives()

    with console.status(f"[dim]Running {task_id}...[/dim]"):
        ran = asyncio.run(run())
    if not ran:
        warning(f"Task {task_id} was skipped (already running or script missing)")
        raise typer.Exit(1)

    history = engine.get_task_history(task_id, limit=1)
    record = history[0]
    if record["output"]:
        console.print(record["output"], markup=False, highlight=False)
    if record["success"]:
        success(f"Task {task_id} completed in {record['duration']}ms")
    else:
        error(f"Task {task_id} failed (exit code {record['exitCode']}): {record['error']}")
        raise typer.Exit(1)
