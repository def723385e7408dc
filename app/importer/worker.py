"""
Import worker: processes one task's items in order inside its own thread or process.
All output goes through the channel as WorkerMessage values; nothing is raised across the worker boundary.
"""
import json
import os
from typing import Any

from app.core.errors import WorkerRuntimeError
from app.importer.cancel_store import CancelSignalStore
from app.importer.messages import TaskStatus, WorkerMessage
from app.importer.models import ImportTask
from app.importer.processors import ProcessorFactory

ITEM_PREVIEW_CHARS = 500


def _item_preview(item: Any) -> str:
    try:
        text = json.dumps(item, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = repr(item)
    return text[:ITEM_PREVIEW_CHARS]


class _Emitter:
    """Puts log messages for one task on the channel. put() blocks while a bounded channel is full."""

    def __init__(self, channel, task_id: str):
        self.channel = channel
        self.task_id = task_id

    def __call__(self, text: str, status: TaskStatus = TaskStatus.RUNNING) -> None:
        self.channel.put(WorkerMessage.log(self.task_id, f"[worker] {text}", status))


def run_import(task: ImportTask, emit, cancel_store: CancelSignalStore, processor_factory: ProcessorFactory) -> dict:
    """Process task.items sequentially, checking the cancel signal before each item. Returns the processor summary plus the outcome.
    Why available: The loop itself, separate from channel plumbing so it can be unit tested with a plain list as emitter."""
    task_id = task.task_id
    items = task.items
    total = len(items)

    emit("[START] Import process initiated.")
    emit(f"Task ID: {task_id}")
    emit(f"Business ID: {task.business_id}")
    emit(f"Total items to process: {total}")
    emit(f"Max ads allowed: {task.max_ads}")
    emit(f"Working directory: {os.getcwd()}")
    emit(f"Process PID: {os.getpid()}")

    processor = processor_factory(task, emit)
    cancelled = False

    for i, item in enumerate(items):
        # Checked only between items: an item that has started always finishes.
        if cancel_store.is_set(task_id):
            emit(f"[CANCEL] Cancel token detected for task {task_id}.")
            emit(
                f"[CANCEL] ⏹️ Import cancelled by user at item {i + 1} of {total}.",
                TaskStatus.CANCELLED,
            )
            cancel_store.clear(task_id)
            cancelled = True
            break

        emit(f"[ITEM] Processing item {i + 1} of {total}...")
        emit(f"[ITEM] Item data: {_item_preview(item)}")
        processor.process(i, item)
        emit(f"[ITEM] Finished processing item {i + 1}.")

    summary = dict(processor.summary() or {})
    if cancelled:
        outcome = TaskStatus.CANCELLED
    else:
        outcome = TaskStatus.COMPLETED
        if summary:
            counts = " ".join(f"{k}={v}" for k, v in summary.items() if isinstance(v, (int, float)))
            if counts:
                emit(f"[SUMMARY] {counts}")
        emit(
            f"[COMPLETE] ✅ Import complete for business {task.business_id}. {total} items processed.",
            TaskStatus.COMPLETED,
        )

    emit(f"[SHUTDOWN] Worker exiting for task {task_id}.", outcome)
    summary["outcome"] = outcome.value
    return summary


def run_worker(task: ImportTask, channel, cancel_store: CancelSignalStore, processor_factory: ProcessorFactory) -> None:
    """Worker entry point (thread target or process target). Always ends with exactly one done or error message on the channel.
    Why available: The launcher spawns this; runtime faults become a failed log line because the submitter is no longer listening."""
    emit = _Emitter(channel, task.task_id)
    try:
        summary = run_import(task, emit, cancel_store, processor_factory)
    except Exception as e:
        failure = WorkerRuntimeError(task.task_id, e)
        channel.put(WorkerMessage.error(task.task_id, f"[worker] [ERROR] ❌ {failure.message}"))
        return
    channel.put(WorkerMessage.done(task.task_id, summary))
