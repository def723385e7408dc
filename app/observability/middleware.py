import json
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("app.access")


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (incoming x-request-id or a new uuid4) and log one structured line when the handler returns.
    For the log stream the line marks when streaming starts, not when the connection closes."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.perf_counter()

        request.state.request_id = rid

        response = await call_next(request)

        dur_ms = (time.perf_counter() - start) * 1000.0
        logger.info(json.dumps({
            "request_id": rid,
            "path": request.url.path,
            "method": request.method,
            "status": response.status_code,
            "latency_ms": round(dur_ms, 2),
        }))
        response.headers["x-request-id"] = rid
        return response


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")
