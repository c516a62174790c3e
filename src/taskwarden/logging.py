"""Centralized logging configuration for taskwarden.

All entry points (CLI, serve) should call configure_logging() early.

Logging Levels:
- DEBUG: Trigger arithmetic, due-task sweeps, watcher notifications
- INFO: Task lifecycle (registered, started, completed, archived, reloaded)
- WARNING: Task failures, skipped runs, config warnings (missing scripts)
- ERROR: Failures that affect the engine (reload errors, watcher faults)

Guidelines:
- Log event names are snake_case; context goes into ``extra`` using dotted
  keys (``task.id``, ``error.message``, ``file.path``).
- A failing task is a WARNING, never an ERROR: it does not affect the engine.
"""

import json
import logging
import os
import time
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, TextIO

DEFAULT_LOG_RETENTION_DAYS = 7
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Attributes present on every LogRecord; anything else came in via ``extra``.
_RESERVED_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "component"}

# Libraries that chatter at INFO
QUIET_LOGGERS = ("watchdog", "filelock", "asyncio")


def prune_old_logs(
    logs_dir: Path,
    retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
    pattern: str = "*.jsonl",
) -> int:
    """Remove log files not modified within ``retention_days``.

    Returns the number of files removed.
    """
    if not logs_dir.is_dir():
        return 0

    horizon = time.time() - retention_days * 86400
    removed = 0
    for path in logs_dir.glob(pattern):
        try:
            if path.is_file() and path.stat().st_mtime < horizon:
                path.unlink()
                removed += 1
        except OSError:
            # Raced with another pruner or unreadable; try again next day
            continue
    return removed


def _component(name: str) -> str:
    parts = name.split(".")
    if len(parts) >= 2 and parts[0] == "taskwarden":
        return parts[1]
    return parts[0]


def _record_extra(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_")
    }


class JSONLHandler(logging.Handler):
    """Writes one JSON object per record to ``<logs_dir>/<UTC date>.jsonl``.

    The file is switched when the UTC date changes; old files are pruned at
    that moment.
    """

    def __init__(
        self,
        logs_dir: Path,
        retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
    ):
        super().__init__()
        logs_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir = logs_dir
        self.retention_days = retention_days
        self._day: date | None = None
        self._stream: TextIO | None = None

    def _stream_for(self, day: date) -> TextIO:
        if self._stream is None or day != self._day:
            if self._stream is not None:
                self._stream.close()
            self._day = day
            self._stream = (self.logs_dir / f"{day.isoformat()}.jsonl").open(
                "a", encoding="utf-8"
            )
            prune_old_logs(self.logs_dir, self.retention_days)
        return self._stream

    def to_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "component": _component(record.name),
            "logger": record.name,
            "message": record.getMessage(),
        }
        extra = _record_extra(record)
        # Lifted so a task's lines can be filtered without parsing ``extra``
        if "task.id" in extra:
            entry["task"] = extra["task.id"]
        if extra:
            entry["extra"] = extra
        if record.exc_info:
            entry["exception"] = (self.formatter or logging.Formatter()).formatException(
                record.exc_info
            )
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.to_entry(record), ensure_ascii=False, default=str)
            stream = self._stream_for(datetime.now(UTC).date())
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self.acquire()
        try:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
        finally:
            self.release()
        super().close()


class ComponentFormatter(logging.Formatter):
    """Prefixes the component and appends ``extra`` as ``key=value`` pairs.

    ``taskwarden.scheduling.engine`` is shown as ``scheduling``.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.component = _component(record.name)
        text = super().format(record)
        extra = _record_extra(record)
        if not extra:
            return text
        return text + " " + " ".join(f"{key}={value}" for key, value in extra.items())


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get("TASKWARDEN_LOG_LEVEL") or "INFO").upper()
    if name not in LOG_LEVELS:
        name = "INFO"
    return getattr(logging, name)


def _console_handler(use_rich: bool) -> logging.Handler:
    if use_rich:
        from rich.logging import RichHandler

        handler: logging.Handler = RichHandler(
            show_path=False,
            show_time=True,
            markup=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(ComponentFormatter("%(component)s | %(message)s"))
        return handler

    handler = logging.StreamHandler()
    handler.setFormatter(
        ComponentFormatter(
            "%(asctime)s %(levelname)-7s %(component)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    return handler


def configure_logging(
    level: str | None = None,
    use_rich: bool = False,
    log_to_file: bool = False,
    logs_dir: Path | None = None,
    retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
) -> None:
    """Install the root handlers. Safe to call again; it replaces them.

    Args:
        level: DEBUG, INFO, WARNING or ERROR. Defaults to the
            TASKWARDEN_LOG_LEVEL environment variable, then INFO.
        use_rich: Render console output with rich.
        log_to_file: Also write JSONL files.
        logs_dir: Directory for JSONL files (default: <home>/logs).
        retention_days: Days of JSONL files to keep.
    """
    from taskwarden.config.paths import get_logs_path

    log_level = _resolve_level(level)
    handlers = [_console_handler(use_rich)]
    if log_to_file:
        handlers.append(JSONLHandler(logs_dir or get_logs_path(), retention_days))

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
