"""taskwarden: a persistent task scheduler running scripts as child processes."""

__version__ = "0.1.0"
