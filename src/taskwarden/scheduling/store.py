"""Scheduler configuration document store.

The store is the sole writer of the JSON document. Every mutation rewrites
the whole document atomically (temp file + rename) under a file lock, so a
concurrent reader (the config watcher, a human editor, the CLI) never sees a
half-written file.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from importlib import resources
from pathlib import Path
from typing import Any

from filelock import FileLock

from taskwarden.scheduling.errors import ConfigValidationError, TaskNotFoundError
from taskwarden.scheduling.types import DEFAULT_TIMEZONE, TaskDefinition
from taskwarden.scheduling.validator import ValidationResult, validate_config

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = "1.0.0"
DEFAULT_TEMPLATE = "default_config.json"


def fallback_document() -> dict[str, Any]:
    """Minimal document used when the bundled template is unavailable."""
    return {
        "version": DOCUMENT_VERSION,
        "lastUpdated": datetime.now(UTC).isoformat(),
        "settings": {
            "timezone": DEFAULT_TIMEZONE,
        },
        "tasks": {
            "example_task": {
                "type": "cron",
                "name": "Example task",
                "description": "Runs the bundled example script",
                "schedule": "0 8 * * *",
                "script": "scripts/example_task.py",
                "args": [],
                "enabled": False,
                "timeout": 28800000,
                "retryOnFailure": False,
                "maxRetries": 0,
                "tags": ["example", "demo"],
            }
        },
        "completed_tasks": {},
    }


def _load_template() -> dict[str, Any] | None:
    try:
        text = (
            resources.files("taskwarden.scheduling")
            .joinpath(DEFAULT_TEMPLATE)
            .read_text(encoding="utf-8")
        )
    except (FileNotFoundError, ModuleNotFoundError):
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(
            "default_template_invalid", extra={"error.message": str(e)}
        )
        return None


def _fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@dataclass
class LoadedDocument:
    """A parsed and validated document that has not been adopted yet."""

    document: dict[str, Any]
    result: ValidationResult
    fingerprint: str
    # Parsed active tasks, so adopting the document cannot fail halfway
    tasks: dict[str, TaskDefinition]


class ConfigStore:
    """Reads, validates and persists the scheduler document."""

    def __init__(self, path: Path, *, base_dir: Path | None = None) -> None:
        self._path = path
        self._lock = FileLock(str(path) + ".lock")
        # Base directory for relative script paths
        self._base_dir = base_dir
        self._document: dict[str, Any] | None = None
        self._warnings: list[str] = []
        self._task_warnings: dict[str, list[str]] = {}
        self._fingerprint: str | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def loaded(self) -> bool:
        return self._document is not None

    @property
    def document(self) -> dict[str, Any]:
        if self._document is None:
            raise RuntimeError("configuration has not been loaded")
        return self._document

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> ValidationResult:
        """Load and validate the document, creating a default one if missing.

        Raises:
            ConfigValidationError: If the document fails hard validation.
        """
        if not self._path.exists():
            self.create_default()
        loaded = self.read_document()
        self.commit(loaded)
        return loaded.result

    def read_document(self) -> LoadedDocument:
        """Read and validate the document without adopting it.

        Raises:
            ConfigValidationError: On unreadable JSON or hard validation errors.
        """
        try:
            raw = self._path.read_bytes()
        except OSError as e:
            raise ConfigValidationError(
                f"cannot read configuration: {e}", errors=[str(e)]
            ) from e

        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigValidationError(
                f"configuration is not valid JSON: {e}", errors=[str(e)]
            ) from e

        result = validate_config(document, base_dir=self._base_dir)
        if result.errors:
            raise ConfigValidationError(
                f"configuration validation failed: {'; '.join(result.errors)}",
                errors=result.errors,
                warnings=result.warnings,
            )

        document.setdefault("settings", {})
        document.setdefault("completed_tasks", {})
        try:
            tasks = {
                task_id: TaskDefinition.from_dict(data)
                for task_id, data in document["tasks"].items()
            }
            for data in document["completed_tasks"].values():
                TaskDefinition.from_dict(data)
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(
                f"configuration validation failed: {e}",
                errors=[str(e)],
                warnings=result.warnings,
            ) from e
        return LoadedDocument(document, result, _fingerprint(raw), tasks)

    def commit(self, loaded: LoadedDocument) -> None:
        """Adopt a document previously returned by read_document()."""
        document, result = loaded.document, loaded.result
        self._document = document
        self._warnings = list(result.warnings)
        self._task_warnings = {k: list(v) for k, v in result.task_warnings.items()}
        self._fingerprint = loaded.fingerprint

        if result.warnings:
            logger.warning(
                "config_loaded_with_warnings",
                extra={"config.warnings": result.warnings},
            )
        logger.info(
            "config_loaded",
            extra={
                "file.path": str(self._path),
                "config.version": document.get("version"),
                "config.tasks_count": len(document.get("tasks", {})),
                "config.warnings_count": len(result.warnings),
            },
        )

    def create_default(self) -> None:
        """Write the default document (bundled template or fallback)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = _load_template()
        if document is None:
            logger.warning(
                "default_template_missing", extra={"file.path": str(self._path)}
            )
            document = fallback_document()
        document["lastUpdated"] = datetime.now(UTC).isoformat()
        self._write(document)
        logger.info(
            "default_config_created",
            extra={
                "file.path": str(self._path),
                "config.tasks_count": len(document.get("tasks", {})),
            },
        )

    def is_stale(self) -> bool:
        """True if the file on disk differs from what was last loaded or written."""
        try:
            current = _fingerprint(self._path.read_bytes())
        except OSError:
            return True
        return current != self._fingerprint

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def timezone(self) -> str:
        if self._document is None:
            return DEFAULT_TIMEZONE
        timezone = self.settings.get("timezone")
        return timezone if isinstance(timezone, str) and timezone else DEFAULT_TIMEZONE

    @property
    def settings(self) -> dict[str, Any]:
        settings = self.document.get("settings")
        return dict(settings) if isinstance(settings, dict) else {}

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    @property
    def task_warnings(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self._task_warnings.items()}

    def get_task_warnings(self, task_id: str) -> list[str]:
        return list(self._task_warnings.get(task_id, []))

    def set_task_warnings(self, task_id: str, warnings: list[str]) -> None:
        if warnings:
            self._task_warnings[task_id] = list(warnings)
        else:
            self._task_warnings.pop(task_id, None)
        self._warnings = [
            f"task {tid}: {', '.join(w)}" for tid, w in self._task_warnings.items()
        ]

    def task_ids(self) -> list[str]:
        return list(self.document.get("tasks", {}))

    def has_task(self, task_id: str) -> bool:
        return task_id in self.document.get("tasks", {})

    def is_archived(self, task_id: str) -> bool:
        return task_id in self.document.get("completed_tasks", {})

    def get_task(self, task_id: str) -> TaskDefinition | None:
        data = self.document.get("tasks", {}).get(task_id)
        return TaskDefinition.from_dict(data) if data is not None else None

    def tasks(self) -> dict[str, TaskDefinition]:
        return {
            task_id: TaskDefinition.from_dict(data)
            for task_id, data in self.document.get("tasks", {}).items()
        }

    def completed_tasks(self) -> dict[str, TaskDefinition]:
        return {
            task_id: TaskDefinition.from_dict(data)
            for task_id, data in self.document.get("completed_tasks", {}).items()
        }

    # ------------------------------------------------------------------
    # Mutations (each one persists immediately)
    # ------------------------------------------------------------------

    def update_config_file(self, task_id: str, definition: TaskDefinition) -> None:
        """Write one task definition back into the active map and persist."""
        tasks = self.document.setdefault("tasks", {})
        tasks[task_id] = definition.to_dict()
        self.persist()

    def remove_task(self, task_id: str) -> TaskDefinition:
        tasks = self.document.setdefault("tasks", {})
        if task_id not in tasks:
            raise TaskNotFoundError(task_id)
        with self._rollback_on_error():
            definition = TaskDefinition.from_dict(tasks.pop(task_id))
            self.persist()
        self._task_warnings.pop(task_id, None)
        return definition

    def archive_task(self, task_id: str, archived_at: datetime) -> TaskDefinition:
        """Move a task from the active map to the archive map and persist."""
        tasks = self.document.setdefault("tasks", {})
        if task_id not in tasks:
            raise TaskNotFoundError(task_id)
        completed = self.document.setdefault("completed_tasks", {})
        with self._rollback_on_error():
            entry = dict(tasks.pop(task_id))
            entry["archivedAt"] = archived_at.isoformat()
            completed[task_id] = entry
            self.persist()
        self._task_warnings.pop(task_id, None)
        return TaskDefinition.from_dict(entry)

    def persist(self) -> None:
        """Rewrite the whole document with a refreshed lastUpdated."""
        document = self.document
        document["lastUpdated"] = datetime.now(UTC).isoformat()
        document.setdefault("version", DOCUMENT_VERSION)
        self._write(document)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _rollback_on_error(self) -> Iterator[None]:
        """Restore both task maps if the enclosed mutation fails to persist."""
        document = self.document
        saved = {
            key: copy.deepcopy(document[key])
            for key in ("tasks", "completed_tasks", "lastUpdated")
            if key in document
        }
        try:
            yield
        except Exception:
            document.update(saved)
            raise

    def _write(self, document: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = (json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode(
            "utf-8"
        )
        with self._lock:
            fd, temp_path = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.stem}_",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                Path(temp_path).replace(self._path)
            except Exception:
                try:
                    Path(temp_path).unlink()
                except OSError:
                    pass
                raise
        self._fingerprint = _fingerprint(data)
