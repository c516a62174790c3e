"""Scheduler document commands."""

from pathlib import Path
from typing import Annotated

import typer

from taskwarden.cli.console import bullet_list, dim, error, success, warning


def register(app: typer.Typer) -> None:
    """Register the validate command."""

    @app.command()
    def validate(
        settings_path: Annotated[
            Path | None,
            typer.Option(
                "--settings",
                "-s",
                help="Path to settings file (default: $TASKWARDEN_HOME/config.toml)",
            ),
        ] = None,
        strict: Annotated[
            bool,
            typer.Option(
                "--strict",
                help="Treat missing script files as errors",
            ),
        ] = False,
    ) -> None:
        """Validate the scheduler document without starting the scheduler."""
        from taskwarden.cli.runtime import load_settings_or_exit
        from taskwarden.scheduling import ConfigStore, ConfigValidationError
        from taskwarden.scheduling.validator import validate_config

        settings = load_settings_or_exit(settings_path)
        path = settings.config_path
        if not path.exists():
            error(f"Scheduler document not found: {path}")
            dim("It is created with defaults on first 'taskwarden serve'")
            raise typer.Exit(1)

        store = ConfigStore(path, base_dir=settings.work_dir)
        try:
            loaded = store.read_document()
        except ConfigValidationError as e:
            error(f"Invalid: {path}")
            bullet_list(e.errors)
            raise typer.Exit(1) from None

        result = loaded.result
        if strict:
            result = validate_config(
                loaded.document,
                strict_script_check=True,
                base_dir=settings.work_dir,
            )
            if result.errors:
                error(f"Invalid (strict): {path}")
                bullet_list(result.errors)
                raise typer.Exit(1)

        for message in result.warnings:
            warning(f"Warning: {message}")

        tasks = loaded.document.get("tasks", {})
        archived = loaded.document.get("completed_tasks", {})
        success(
            f"Valid: {len(tasks)} tasks, {len(archived)} archived, "
            f"{len(result.warnings)} warnings"
        )
