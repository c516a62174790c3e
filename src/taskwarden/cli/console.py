"""Console output shared by the CLI commands."""

from collections.abc import Iterable
from datetime import UTC, datetime

import typer
from rich.console import Console
from rich.table import Table

console = Console()


def error(msg: str) -> None:
    console.print(f"[red]{msg}[/red]")


def warning(msg: str) -> None:
    console.print(f"[yellow]{msg}[/yellow]")


def success(msg: str) -> None:
    console.print(f"[green]{msg}[/green]")


def dim(msg: str) -> None:
    console.print(f"[dim]{msg}[/dim]")


def bullet_list(messages: Iterable[str], indent: str = "  - ") -> None:
    """Print validation messages one per line, without markup."""
    for message in messages:
        console.print(f"{indent}{message}", markup=False, highlight=False)


def create_table(title: str | None, columns: Iterable[tuple[str, str]]) -> Table:
    """Build a table from ``(header, style)`` pairs; an empty style is plain."""
    table = Table(title=title)
    for header, style in columns:
        table.add_column(header, style=style or None)
    return table


def confirm_or_cancel(prompt: str, force: bool) -> bool:
    """Ask before a destructive action unless ``force`` is set."""
    if force or typer.confirm(prompt):
        return True
    dim("Cancelled")
    return False


def format_enabled(enabled: bool) -> str:
    return "[green]yes[/green]" if enabled else "[dim]no[/dim]"


def format_countdown(next_fire: datetime | str | None) -> str:
    """Render the time until ``next_fire`` as ``in 2h 5m``."""
    if isinstance(next_fire, str):
        next_fire = datetime.fromisoformat(next_fire)
    if next_fire is None:
        return "[dim]-[/dim]"

    seconds = (next_fire - datetime.now(UTC)).total_seconds()
    if seconds <= 0:
        return "[green]now[/green]"

    minutes = int(seconds) // 60
    if minutes == 0:
        return "in <1m"

    days, remainder = divmod(minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    if days:
        parts = [f"{days}d", f"{hours}h" if hours else ""]
    elif hours:
        parts = [f"{hours}h", f"{minutes}m" if minutes else ""]
    else:
        parts = [f"{minutes}m"]
    return "in " + " ".join(p for p in parts if p)
