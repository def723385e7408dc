"""
Durable cancellation signals: one marker file per task id in a shared directory.
The cancel endpoint and the worker may run in different threads or OS processes; a file is visible to both.
"""
import os
from typing import Protocol
from urllib.parse import quote

MARKER_SUFFIX = ".cancel"


class CancelSignalStore(Protocol):
    """Capability the core needs from any backing medium: set, check and clear a per-task flag."""

    def request(self, task_id: str) -> None: ...

    def is_set(self, task_id: str) -> bool: ...

    def clear(self, task_id: str) -> None: ...


class FileCancelStore:
    """Cancellation flags as marker files under directory. All operations are idempotent and safe for unknown ids.
    Why available: Lets a cancel request handled anywhere on the host reach a worker running in another thread or process."""

    def __init__(self, directory: str):
        self.directory = directory

    def _marker_path(self, task_id: str) -> str:
        """Map a caller-supplied task id to a file inside the directory (path separators and dots cannot escape it)."""
        return os.path.join(self.directory, quote(task_id, safe="") + MARKER_SUFFIX)

    def request(self, task_id: str) -> None:
        os.makedirs(self.directory, exist_ok=True)
        with open(self._marker_path(task_id), "w", encoding="utf-8") as f:
            f.write("cancel")

    def is_set(self, task_id: str) -> bool:
        return os.path.isfile(self._marker_path(task_id))

    def clear(self, task_id: str) -> None:
        try:
            os.remove(self._marker_path(task_id))
        except FileNotFoundError:
            pass

    def __repr__(self) -> str:
        return f"FileCancelStore({self.directory!r})"
