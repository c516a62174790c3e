"""Service settings models using Pydantic."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from taskwarden.config.paths import get_config_document_path, get_work_dir

logger = logging.getLogger(__name__)


class SettingsError(Exception):
    """Service settings error."""

    pass


class LoggingSettings(BaseModel):
    """Configuration for log output."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    # Also write JSONL log files under <home>/logs
    to_file: bool = False
    retention_days: int = Field(default=7, ge=1)


class TaskwardenSettings(BaseModel):
    """Root service settings.

    These settings control the engine process itself. Task definitions live
    in the scheduler document (``config_file``), not here.
    """

    work_dir: Path = Field(default_factory=get_work_dir)
    # None = <work_dir>/config/scheduler-config.json
    config_file: Path | None = None
    # Seconds between due-task sweeps for one-shot tasks
    poll_interval: float = Field(default=60.0, gt=0)
    # Seconds to wait after a config file change before reloading
    reload_debounce: float = Field(default=1.0, ge=0)
    # Seconds between a one-shot success and its archive
    archive_delay: float = Field(default=1.0, ge=0)
    history_limit: int = Field(default=50, ge=1)
    watch_config: bool = True
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _resolve_paths(self) -> "TaskwardenSettings":
        self.work_dir = self.work_dir.expanduser()
        if self.config_file is None:
            self.config_file = get_config_document_path(self.work_dir)
        else:
            self.config_file = self.config_file.expanduser()
        return self

    @property
    def config_path(self) -> Path:
        """The resolved scheduler document path."""
        if self.config_file is None:
            raise SettingsError("config_file was not resolved")
        return self.config_file
