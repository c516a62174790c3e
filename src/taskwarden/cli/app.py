"""Main CLI application."""

import typer

from taskwarden.cli.commands import config, serve, task

app = typer.Typer(
    name="taskwarden",
    help="taskwarden - persistent task scheduler",
    no_args_is_help=True,
)

serve.register(app)
config.register(app)
task.register(app)


if __name__ == "__main__":
    app()
