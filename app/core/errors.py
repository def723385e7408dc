"""Error taxonomy for import tasks, each class carrying the HTTP status it maps to."""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ImportTaskError(Exception):
    """Base class for import task failures. status_code is what the API returns when the error reaches a handler."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ImportTaskError):
    """Malformed or missing request fields. Surfaced as 400, never retried."""

    status_code = 400


class WorkerLaunchError(ImportTaskError):
    """The worker's execution context could not be created; the task is never registered as running."""

    status_code = 500


class WorkerRuntimeError(ImportTaskError):
    """Uncaught fault inside a running worker. Never raised across the worker boundary: converted to a failed log line."""

    def __init__(self, task_id: str, cause: BaseException):
        super().__init__(f"Import failed for task {task_id}: {type(cause).__name__}: {cause}")
        self.task_id = task_id
        self.cause = cause


class StreamReadError(ImportTaskError):
    """Transient failure reading the cancellation signal from inside the log stream. The stream treats it as not cancelled."""

    def __init__(self, task_id: str, cause: BaseException):
        super().__init__(f"Could not read cancel signal for task {task_id}: {cause}")
        self.task_id = task_id
        self.cause = cause


async def import_task_error_handler(request: Request, exc: ImportTaskError) -> JSONResponse:
    """Render any ImportTaskError as {"message": ...} with the class status code.
    Why available: Keeps API error bodies uniform and never leaks stack traces; 5xx errors are logged with traceback."""
    if exc.status_code >= 500:
        logger.error("request_failed path=%s: %s", request.url.path, exc.message, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})
