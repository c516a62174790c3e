"""CLI command modules."""

from taskwarden.cli.commands import config, serve, task

__all__ = ["config", "serve", "task"]
