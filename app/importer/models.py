from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError
from app.models.schemas import CancelRequest, ImportRequest


@dataclass
class ImportTask:
    """Initial context handed to a worker: task_id, items, business_id and max_ads (pass-through, not enforced).
    Why available: Plain dataclass so it can cross a thread or process boundary unchanged."""

    task_id: str
    items: List[Any] = field(default_factory=list)
    business_id: Optional[Any] = None
    max_ads: Optional[Union[int, float]] = None

    def validate(self) -> "ImportTask":
        """Raise ValidationError if items is empty or task_id is missing."""
        if not isinstance(self.items, list) or len(self.items) == 0:
            raise ValidationError("Field 'items' must be a non-empty array")
        if not isinstance(self.task_id, str) or not self.task_id.strip():
            raise ValidationError("Missing taskId")
        return self


def _first_error(e: PydanticValidationError) -> str:
    err = e.errors()[0] if e.errors() else {}
    loc = ".".join(str(p) for p in err.get("loc", ())) or "body"
    return f"Invalid field '{loc}': {err.get('msg', 'invalid value')}"


def parse_import_request(body: Any) -> ImportTask:
    """Validate a raw JSON body for POST /import and build the ImportTask. Raises ValidationError (400) on any problem.
    Why available: Keeps request validation synchronous and separate from the launch so invalid submissions never spawn anything."""
    if not isinstance(body, dict):
        body = {}
    try:
        req = ImportRequest.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError(_first_error(e)) from e
    return ImportTask(
        task_id=req.task_id or "",
        items=req.items or [],
        business_id=req.business_id,
        max_ads=req.max_ads,
    ).validate()


def parse_cancel_request(body: Any) -> str:
    """Return the task id from a POST /import/cancel body; raise ValidationError if absent."""
    if not isinstance(body, dict):
        body = {}
    try:
        req = CancelRequest.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError(_first_error(e)) from e
    if not req.task_id or not req.task_id.strip():
        raise ValidationError("Missing taskId")
    return req.task_id


def summarize_task(task: ImportTask) -> Dict[str, Any]:
    return {
        "task_id": task.task_id,
        "business_id": task.business_id,
        "items": len(task.items),
        "max_ads": task.max_ads,
    }
