"""Command-line interface."""

from taskwarden.cli.app import app

__all__ = ["app"]
