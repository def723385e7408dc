import logging
import time
from typing import Callable, Optional, Type, TypeVar, Tuple

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    fn: Callable[[], T],
    *,
    retries: int = 2,
    backoff_seconds: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = (Exception,),
    label: str = "",
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Run fn() with retries and exponential backoff, re-raising the last error once retries are exhausted. If retry_on is None, defaults to (Exception,).
    Why available: Used by the backend client so transient network or 5xx failures do not fail a whole import item."""
    exc_types: Tuple[Type[BaseException], ...] = retry_on or (Exception,)

    for attempt in range(retries + 1):
        try:
            return fn()
        except exc_types as e:
            if attempt >= retries:
                raise
            sleep_s = backoff_seconds * (2 ** attempt)
            logger.warning("retrying %s after %s (attempt %d/%d, sleep %.2fs)", label or "call", e, attempt + 1, retries, sleep_s)
            (sleep or time.sleep)(sleep_s)

    raise RuntimeError("unreachable")
