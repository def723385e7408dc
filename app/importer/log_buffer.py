"""
Per-task, append-only, in-memory log store.
Lives in the memory of one server process: the process that owns the worker handle writes it and the same
process's stream endpoint reads it. Entries are never evicted automatically; only clear() removes a task.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from app.importer.messages import TERMINAL_STATUSES, TaskStatus


def timestamp_prefix(now: Optional[datetime] = None) -> str:
    """Return the [HH:MM:SS] prefix (24-hour, zero-padded local time) used on every log line."""
    now = now or datetime.now()
    return now.strftime("[%H:%M:%S]")


def stamp(message: str, now: Optional[datetime] = None) -> str:
    return f"{timestamp_prefix(now)} {message}"


@dataclass(frozen=True)
class LogEntry:
    """A single timestamped log line plus the task status it reports.
    Why available: The stream pushes text to clients and decides termination from status, never from parsing text."""

    text: str
    status: TaskStatus = TaskStatus.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class LogBuffer:
    """Mapping task_id -> ordered list of LogEntry. One writer (the task's observer) and any number of cursor-based readers."""

    def __init__(self):
        self._entries: Dict[str, List[LogEntry]] = {}

    def push(self, task_id: str, message: str, status: TaskStatus = TaskStatus.RUNNING) -> LogEntry:
        """Stamp and append a line, creating the task's sequence on first write."""
        entry = LogEntry(text=stamp(message), status=status)
        self._entries.setdefault(task_id, []).append(entry)
        return entry

    def read(self, task_id: str, start: int = 0) -> List[LogEntry]:
        """Return entries from index start to the current end without consuming them. Unknown tasks read as empty."""
        entries = self._entries.get(task_id)
        if not entries:
            return []
        return entries[start:]

    def size(self, task_id: str) -> int:
        return len(self._entries.get(task_id) or [])

    def last_status(self, task_id: str) -> Optional[TaskStatus]:
        entries = self._entries.get(task_id)
        return entries[-1].status if entries else None

    def clear(self, task_id: str) -> None:
        self._entries.pop(task_id, None)

    def task_ids(self) -> List[str]:
        return list(self._entries)
