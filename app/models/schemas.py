from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional, Union


class ImportRequest(BaseModel):
    """Request body for POST /import. Why available: Carries the items to import, the owning business, an optional cap and the caller-chosen task id."""

    model_config = ConfigDict(populate_by_name=True)

    items: Optional[List[Any]] = Field(None, description="Import records (opaque objects), must be non-empty")
    business_id: Optional[Any] = Field(None, alias="businessId", description="Owning business; passed through to the worker")
    max_ads: Optional[Union[int, float]] = Field(None, alias="maxAds", description="Optional cap, passed through to the worker")
    task_id: Optional[str] = Field(None, alias="taskId", description="Caller-supplied id, unique per in-flight job")


class ImportAcceptedResponse(BaseModel):
    """Fire-and-forget acknowledgement for POST /import; the job result is only visible in the log stream."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(..., alias="taskId")
    saved: int = 0
    errors: int = 0


class CancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: Optional[str] = Field(None, alias="taskId")


class CancelResponse(BaseModel):
    """Response for POST /import/cancel. Why available: Confirms the signal was written; it does not confirm the worker stopped."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    task_id: str = Field(..., alias="taskId")


class TaskStatusResponse(BaseModel):
    """Response for GET /import/tasks/{taskId}: whether this process runs the task, buffered line count, pending cancel and last reported status."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(..., alias="taskId")
    running: bool
    log_lines: int = Field(0, alias="logLines", ge=0)
    cancel_requested: bool = Field(False, alias="cancelRequested")
    status: Optional[str] = None


class ConfigResponse(BaseModel):
    """Response for GET /config: effective non-secret settings. Why available: Lets clients size their polling and see which worker mode and processor are active."""

    sse_tick_ms: int = Field(..., description="Log stream tick interval in ms")
    worker_mode: str = Field(..., description="thread or process")
    import_processor: str = Field(..., description="Per-item work implementation")
    item_delay_ms: int = Field(..., description="Simulated per-item duration in ms")
    channel_maxsize: int = Field(..., description="Bound of the worker message channel")
    rate_limit_requests: int = Field(..., description="Rate limit requests per window")
    rate_limit_window_seconds: int = Field(..., description="Rate limit window in seconds")
