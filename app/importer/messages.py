"""Messages passed from an import worker to its coordinator, tagged with an explicit task status."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class MessageKind(str, Enum):
    LOG = "log"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class WorkerMessage:
    """One message on the worker channel: a log line, the done signal, or a runtime error.
    Why available: Plain picklable value so the same channel protocol works for thread and process workers."""

    kind: MessageKind
    task_id: str
    text: str = ""
    status: TaskStatus = TaskStatus.RUNNING
    summary: Optional[Dict[str, Any]] = None

    @classmethod
    def log(cls, task_id: str, text: str, status: TaskStatus = TaskStatus.RUNNING) -> "WorkerMessage":
        return cls(MessageKind.LOG, task_id, text, status)

    @classmethod
    def done(cls, task_id: str, summary: Optional[Dict[str, Any]] = None) -> "WorkerMessage":
        return cls(MessageKind.DONE, task_id, summary=summary)

    @classmethod
    def error(cls, task_id: str, text: str) -> "WorkerMessage":
        return cls(MessageKind.ERROR, task_id, text, TaskStatus.FAILED)
