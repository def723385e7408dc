import json
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.errors import ImportTaskError, import_task_error_handler
from app.models.schemas import (
    ImportAcceptedResponse,
    CancelResponse,
    TaskStatusResponse,
    ConfigResponse,
)

from app.importer.cancel_store import FileCancelStore
from app.importer.launcher import ImportLauncher
from app.importer.log_buffer import LogBuffer
from app.importer.models import parse_import_request, parse_cancel_request
from app.importer.processors import build_processor_factory
from app.importer.stream import stream_task_logs

from app.guardrails.rate_limit import SimpleRateLimiter
from app.observability.middleware import RequestTimingMiddleware, get_request_id


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------------
# App setup
# -------------------------

app = FastAPI(title="Ad Import Service")
app.add_middleware(RequestTimingMiddleware)
app.add_exception_handler(ImportTaskError, import_task_error_handler)

rate_limiter = SimpleRateLimiter(
    max_requests=settings.rate_limit_requests,
    window_seconds=settings.rate_limit_window_seconds,
)

# Process-local: log buffer and worker handles are only visible to this server process.
log_buffer = LogBuffer()
cancel_store = FileCancelStore(settings.cancel_dir)
launcher = ImportLauncher(
    log_buffer,
    cancel_store,
    build_processor_factory(settings.import_processor, settings.item_delay_ms),
    worker_mode=settings.worker_mode,
    channel_maxsize=settings.channel_maxsize,
)


async def _read_json(request: Request) -> Any:
    """Request body as JSON, or {} when the body is empty or not JSON (validation then reports the missing fields)."""
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}


# -------------------------
# Root
# -------------------------

@app.get("/")
def root():
    """Returns a minimal welcome payload with app name and docs URL."""
    return {"app": "Ad Import Service", "docs": "/docs"}


@app.get("/health")
def health():
    """Returns 200 OK with status. Used by load balancers and probes to check if the API is up."""
    return {"status": "ok"}


@app.get("/config", response_model=ConfigResponse)
def config():
    """Returns the effective non-secret import settings (tick interval, worker mode, processor, channel bound, rate limit).
    Why available: Lets clients and operators see how the running server streams and executes imports."""
    return ConfigResponse(
        sse_tick_ms=settings.sse_tick_ms,
        worker_mode=settings.worker_mode,
        import_processor=settings.import_processor,
        item_delay_ms=settings.item_delay_ms,
        channel_maxsize=settings.channel_maxsize,
        rate_limit_requests=settings.rate_limit_requests,
        rate_limit_window_seconds=settings.rate_limit_window_seconds,
    )


# -------------------------
# Import: submit
# -------------------------

@app.post("/import", response_model=ImportAcceptedResponse)
async def submit_import(request: Request):
    """Validates the submission and launches a background worker for it; returns at once with the task id (fire-and-forget).
    Why available: Entry point for bulk imports; progress is only observable through GET /import/logs/{taskId}."""
    rate_limiter.check(request)
    task = parse_import_request(await _read_json(request))
    # process-mode spawn blocks; keep it off the event loop
    await run_in_threadpool(launcher.launch, task)
    logger.info(
        "import_submitted request_id=%s task_id=%s items=%d",
        get_request_id(request), task.task_id, len(task.items),
    )
    return ImportAcceptedResponse(task_id=task.task_id)


# -------------------------
# Import: log stream
# -------------------------

@app.get("/import/logs/{task_id}")
async def import_logs(task_id: str):
    """Streams the task's log lines as Server-Sent Events (data: <line>) and closes after completion, failure or cancellation.
    Why available: Live progress for the UI; unknown task ids get an open stream that only ends on cancel or disconnect."""
    return StreamingResponse(
        stream_task_logs(task_id, log_buffer, cancel_store, settings.sse_tick_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# -------------------------
# Import: cancel
# -------------------------

@app.post("/import/cancel", response_model=CancelResponse)
async def cancel_import(request: Request):
    """Records a cancel request for the task. Advisory: the worker stops at its next item boundary and the stream on its next tick.
    Why available: Lets users stop a long import without waiting; does not confirm the worker actually stopped."""
    rate_limiter.check(request)
    task_id = parse_cancel_request(await _read_json(request))
    try:
        await run_in_threadpool(cancel_store.request, task_id)
    except OSError as e:
        raise ImportTaskError(f"Could not record cancel request: {e}") from e
    logger.info("import_cancel_requested request_id=%s task_id=%s", get_request_id(request), task_id)
    return CancelResponse(message="Cancel requested (file token)", task_id=task_id)


# -------------------------
# Import: task status
# -------------------------

@app.get("/import/tasks/{task_id}", response_model=TaskStatusResponse)
def task_status(task_id: str):
    """Returns whether this process is running the task, how many log lines are buffered, whether a cancel is pending, and the last reported status.
    Why available: Cheap polling alternative to the stream; unknown ids report not running with zero lines."""
    last = log_buffer.last_status(task_id)
    return TaskStatusResponse(
        task_id=task_id,
        running=launcher.is_running(task_id),
        log_lines=log_buffer.size(task_id),
        cancel_requested=cancel_store.is_set(task_id),
        status=last.value if last else None,
    )
