"""Bounded per-task execution history (in memory only)."""

from taskwarden.scheduling.types import ExecutionRecord

DEFAULT_HISTORY_LIMIT = 50


class HistoryStore:
    """Keeps the most recent execution records per task, newest first."""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be positive")
        self._limit = limit
        self._records: dict[str, list[ExecutionRecord]] = {}

    @property
    def limit(self) -> int:
        return self._limit

    def add(self, task_id: str, record: ExecutionRecord) -> None:
        records = self._records.setdefault(task_id, [])
        records.insert(0, record)
        del records[self._limit :]

    def get(
        self,
        task_id: str,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ExecutionRecord]:
        records = self._records.get(task_id, [])
        offset = max(0, offset)
        if limit is None:
            return records[offset:]
        return records[offset : offset + max(0, limit)]

    def count(self, task_id: str) -> int:
        return len(self._records.get(task_id, []))

    def latest(self, task_id: str) -> ExecutionRecord | None:
        records = self._records.get(task_id)
        return records[0] if records else None

    def clear(self, task_id: str) -> None:
        self._records.pop(task_id, None)
