"""
Job launcher: spawns one isolated worker per submitted task and forwards its channel into the log buffer.

Handles and log buffer live in this process only. Two server processes can each run a worker for the same
task id and a stream served by one process never sees logs written in another; the deployment must be single-process.
"""
import logging
import multiprocessing
import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from app.core.errors import ValidationError, WorkerLaunchError
from app.importer.cancel_store import CancelSignalStore
from app.importer.log_buffer import LogBuffer
from app.importer.messages import MessageKind, TaskStatus, WorkerMessage
from app.importer.models import ImportTask, summarize_task
from app.importer.processors import ProcessorFactory
from app.importer.worker import run_worker

logger = logging.getLogger(__name__)

OBSERVER_POLL_SECONDS = 0.25


def apply_message(buffer: LogBuffer, message: WorkerMessage) -> bool:
    """Apply one worker message to the log buffer. Returns True when the message ends the worker (done or error).
    Why available: Observer logic as a pure message -> buffer mutation, independent of whether the worker is a thread or a process."""
    if message.kind == MessageKind.LOG:
        buffer.push(message.task_id, message.text, message.status)
        return False
    if message.kind == MessageKind.ERROR:
        buffer.push(message.task_id, message.text, TaskStatus.FAILED)
        return True
    return True


@dataclass
class WorkerHandle:
    """A running worker: its execution context (Thread or Process), the channel it writes to, and the observer draining it."""

    task_id: str
    runner: Union[threading.Thread, Any]
    channel: Any
    observer: Optional[threading.Thread] = None

    def is_alive(self) -> bool:
        return self.runner.is_alive()

    @property
    def exit_code(self) -> Optional[int]:
        return getattr(self.runner, "exitcode", None)


class ImportLauncher:
    """Validates submissions, spawns workers (thread or process), and keeps the task_id -> handle registry.
    Why available: Fire-and-forget entry point for POST /import; no queueing or concurrency cap on running workers."""

    def __init__(
        self,
        log_buffer: LogBuffer,
        cancel_store: CancelSignalStore,
        processor_factory: ProcessorFactory,
        *,
        worker_mode: str = "thread",
        channel_maxsize: int = 100,
    ):
        if worker_mode not in ("thread", "process"):
            raise ValueError(f"worker_mode must be 'thread' or 'process', got {worker_mode!r}")
        self.log_buffer = log_buffer
        self.cancel_store = cancel_store
        self.processor_factory = processor_factory
        self.worker_mode = worker_mode
        self.channel_maxsize = channel_maxsize
        self._handles: Dict[str, WorkerHandle] = {}
        self._lock = threading.Lock()

    # -------------------------
    # Registry
    # -------------------------

    def is_running(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._handles

    def running_task_ids(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def get_handle(self, task_id: str) -> Optional[WorkerHandle]:
        with self._lock:
            return self._handles.get(task_id)

    def _deregister(self, handle: WorkerHandle) -> None:
        with self._lock:
            if self._handles.get(handle.task_id) is handle:
                del self._handles[handle.task_id]
        logger.info("import_worker_deregistered task_id=%s", handle.task_id)

    # -------------------------
    # Launch
    # -------------------------

    def _spawn(self, task: ImportTask) -> WorkerHandle:
        name = f"import-worker-{task.task_id}"
        if self.worker_mode == "process":
            ctx = multiprocessing.get_context("spawn")
            channel = ctx.Queue(maxsize=self.channel_maxsize)
            runner = ctx.Process(
                target=run_worker,
                args=(task, channel, self.cancel_store, self.processor_factory),
                name=name,
                daemon=True,
            )
        else:
            channel = queue.Queue(maxsize=self.channel_maxsize)
            runner = threading.Thread(
                target=run_worker,
                args=(task, channel, self.cancel_store, self.processor_factory),
                name=name,
                daemon=True,
            )
        runner.start()
        return WorkerHandle(task_id=task.task_id, runner=runner, channel=channel)

    def launch(self, task: ImportTask) -> str:
        """Validate, spawn a worker for task, register it and start observing its channel. Returns task_id immediately.
        Raises ValidationError for bad input or a task id already running here, WorkerLaunchError if the worker cannot be started."""
        task.validate()

        with self._lock:
            if task.task_id in self._handles:
                raise ValidationError(f"Task {task.task_id} is already running")
            try:
                handle = self._spawn(task)
            except Exception as e:
                logger.error("import_worker_launch_failed task_id=%s", task.task_id, exc_info=True)
                raise WorkerLaunchError(f"Could not start import worker for task {task.task_id}: {e}") from e
            self._handles[task.task_id] = handle

        handle.observer = threading.Thread(
            target=self._observe,
            args=(handle,),
            name=f"import-observer-{task.task_id}",
            daemon=True,
        )
        handle.observer.start()
        logger.info("import_worker_started mode=%s %s", self.worker_mode, summarize_task(task))
        return task.task_id

    # -------------------------
    # Observers: message, error, exit
    # -------------------------

    def _observe(self, handle: WorkerHandle) -> None:
        """Drain the worker channel until done/error arrives or the worker exits without sending either."""
        exited = False
        try:
            while True:
                try:
                    message = handle.channel.get(timeout=OBSERVER_POLL_SECONDS)
                except queue.Empty:
                    if handle.is_alive():
                        continue
                    if not exited:
                        # one more poll for messages written just before exit
                        exited = True
                        continue
                    self._on_exit(handle)
                    return
                if message.kind == MessageKind.DONE:
                    logger.info("import_worker_done task_id=%s summary=%s", handle.task_id, message.summary)
                elif message.kind == MessageKind.ERROR:
                    logger.warning("import_worker_error task_id=%s: %s", handle.task_id, message.text)
                if apply_message(self.log_buffer, message):
                    return
        except Exception:
            logger.exception("import_observer_failed task_id=%s", handle.task_id)
            self.log_buffer.push(handle.task_id, "[worker] [ERROR] ❌ Log forwarding failed; worker output lost.", TaskStatus.FAILED)
        finally:
            if self.worker_mode == "process":
                handle.runner.join(timeout=5)
            self._deregister(handle)

    def _on_exit(self, handle: WorkerHandle) -> None:
        code = handle.exit_code
        logger.warning("import_worker_exited_early task_id=%s exit_code=%s", handle.task_id, code)
        suffix = f" with exit code {code}" if code is not None else ""
        self.log_buffer.push(
            handle.task_id,
            f"[worker] [ERROR] ❌ Worker stopped{suffix} before finishing; import failed.",
            TaskStatus.FAILED,
        )

    def join(self, task_id: str, timeout: Optional[float] = None) -> bool:
        """Wait until the task's observer has finished (handle deregistered). Returns False on timeout. Used by tests and scripts."""
        handle = self.get_handle(task_id)
        if handle is None:
            return True
        if handle.observer is not None:
            handle.observer.join(timeout)
            return not handle.observer.is_alive()
        return not handle.is_alive()
