"""Service settings loading from TOML files."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from taskwarden.config.models import SettingsError, TaskwardenSettings
from taskwarden.config.paths import get_settings_path


def _get_default_settings_paths() -> list[Path]:
    """Get ordered list of default settings file locations."""
    return [
        Path("taskwarden.toml"),  # Current directory
        get_settings_path(),  # ~/.taskwarden/config.toml (or TASKWARDEN_HOME)
        Path("/etc/taskwarden/config.toml"),  # System-wide
    ]


def find_settings_file(path: Path | None = None) -> Path | None:
    """Locate the settings file to use.

    Raises:
        FileNotFoundError: If an explicit path was given and does not exist.
    """
    if path is not None:
        settings_path = Path(path).expanduser()
        if not settings_path.exists():
            raise FileNotFoundError(f"Settings file not found: {settings_path}")
        return settings_path

    for default_path in _get_default_settings_paths():
        expanded = default_path.expanduser()
        if expanded.exists():
            return expanded
    return None


def load_settings(path: Path | None = None) -> TaskwardenSettings:
    """Load service settings from a TOML file.

    Unlike task definitions, settings are optional: when no file is found in
    the default locations the defaults are used.

    Args:
        path: Explicit path to a settings file. If None, searches default locations.

    Raises:
        FileNotFoundError: If an explicit path was given and does not exist.
        SettingsError: If the file cannot be parsed or fails validation.
    """
    settings_path = find_settings_file(path)
    if settings_path is None:
        return TaskwardenSettings()

    try:
        with settings_path.open("rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise SettingsError(f"Invalid TOML in {settings_path}: {e}") from e

    try:
        return TaskwardenSettings.model_validate(raw)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings in {settings_path}: {e}") from e
