"""Per-item work plugged into the import worker. A factory is called once per run with (task, log) and returns an ItemProcessor."""
import time
from functools import partial
from typing import Any, Callable, Dict, Optional, Protocol

from app.importer.models import ImportTask

LogFn = Callable[[str], None]


class ItemProcessor(Protocol):
    def process(self, index: int, item: Any) -> None: ...

    def summary(self) -> Optional[Dict[str, Any]]: ...


ProcessorFactory = Callable[[ImportTask, LogFn], ItemProcessor]


class SimulatedProcessor:
    """Stand-in work: waits a fixed delay per item and counts processed items.
    Why available: Default processor for demos and tests; the delay makes cancellation observable between items."""

    def __init__(self, task: ImportTask, log: LogFn, delay_seconds: float = 0.5):
        self.task = task
        self.log = log
        self.delay_seconds = delay_seconds
        self.processed = 0

    def process(self, index: int, item: Any) -> None:
        if self.delay_seconds > 0:
            time.sleep(self.delay_seconds)
        self.processed += 1

    def summary(self) -> Optional[Dict[str, Any]]:
        return {"processed": self.processed}


def ads_processor_factory(task: ImportTask, log: LogFn) -> ItemProcessor:
    """Build the backend-writing ad processor inside the worker's own context (client created from env there)."""
    from app.ads.processor import AdImportProcessor

    return AdImportProcessor.from_settings(task, log)


def build_processor_factory(name: str, item_delay_ms: int = 500) -> ProcessorFactory:
    """Resolve IMPORT_PROCESSOR to a picklable factory. Raises ValueError for unknown names."""
    key = (name or "").strip().lower()
    if key == "simulated":
        return partial(SimulatedProcessor, delay_seconds=item_delay_ms / 1000.0)
    if key == "ads":
        return ads_processor_factory
    raise ValueError(f"Unknown import processor: {name!r} (expected 'simulated' or 'ads')")
