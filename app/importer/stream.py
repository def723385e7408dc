"""
Server-Sent Events log stream for one import task.

The generator drains the task's log buffer every tick and stops when a drained entry carries a terminal
status or a cancel has been requested. If neither ever happens the connection stays open, polling every tick.
"""
import asyncio
import logging
from typing import AsyncIterator

from app.core.errors import StreamReadError
from app.importer.cancel_store import CancelSignalStore
from app.importer.log_buffer import LogBuffer, stamp

logger = logging.getLogger(__name__)

CANCELLED_LINE = "⏹️ Import cancelled by user."
STREAM_FINISHED_LINE = "Log stream finished"


def format_sse(line: str) -> str:
    """Render one log line as an SSE data event. Newlines are flattened so a line is always exactly one event."""
    flat = " ".join(line.splitlines()) if line else ""
    return f"data: {flat}\n\n"


def _cancel_requested(cancel_store: CancelSignalStore, task_id: str) -> bool:
    """Read the cancel flag; a read failure counts as not cancelled so an active stream is never cut short."""
    try:
        return cancel_store.is_set(task_id)
    except Exception as e:
        logger.warning("%s", StreamReadError(task_id, e))
        return False


async def stream_task_logs(
    task_id: str,
    log_buffer: LogBuffer,
    cancel_store: CancelSignalStore,
    tick_seconds: float,
) -> AsyncIterator[str]:
    """Yield SSE events for task_id: a start line, every buffered log line in order (cursor based, non-destructive), then a finish line.
    Why available: Powers GET /import/logs/{taskId}; clients see worker progress with at most one tick of added latency."""
    logger.info("log_stream_opened task_id=%s tick_seconds=%s", task_id, tick_seconds)
    yield format_sse(stamp(f"Log stream started for task {task_id}"))

    cursor = 0
    finished = False
    try:
        while True:
            entries = log_buffer.read(task_id, cursor)
            for entry in entries:
                yield format_sse(entry.text)
                if entry.is_terminal:
                    finished = True
            cursor += len(entries)

            cancelled = _cancel_requested(cancel_store, task_id)
            if finished or cancelled:
                if cancelled:
                    yield format_sse(stamp(CANCELLED_LINE))
                    try:
                        log_buffer.clear(task_id)
                        cancel_store.clear(task_id)
                    except Exception:
                        logger.warning("log_stream_cleanup_failed task_id=%s", task_id, exc_info=True)
                break

            await asyncio.sleep(tick_seconds)

        yield format_sse(stamp(STREAM_FINISHED_LINE))
    finally:
        logger.info("log_stream_closed task_id=%s delivered=%d finished=%s", task_id, cursor, finished)
