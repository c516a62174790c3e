"""Configuration module."""

from taskwarden.config.loader import find_settings_file, load_settings
from taskwarden.config.models import (
    LoggingSettings,
    SettingsError,
    TaskwardenSettings,
)
from taskwarden.config.paths import (
    get_config_document_path,
    get_logs_path,
    get_settings_path,
    get_taskwarden_home,
    get_work_dir,
)

__all__ = [
    "LoggingSettings",
    "SettingsError",
    "TaskwardenSettings",
    "find_settings_file",
    "get_config_document_path",
    "get_logs_path",
    "get_settings_path",
    "get_taskwarden_home",
    "get_work_dir",
    "load_settings",
]
