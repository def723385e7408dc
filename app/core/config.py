import math
import os
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()

DEFAULT_SSE_TICK_MS = 5000


def _tick_ms_from_env(name: str = "SSE_TICK_MS", default: int = DEFAULT_SSE_TICK_MS) -> int:
    """Read the stream tick interval; non-numeric or non-positive values fall back to the default instead of failing startup."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value) or value <= 0:
        return default
    return int(value) or default


class Settings(BaseModel):
    """Application settings loaded from environment: stream tick, cancel marker directory, worker mode and processor, backend credentials, rate limit and log level.
    Why available: Single source of configuration so the launcher, stream, worker and processors agree on paths and limits."""
    sse_tick_ms: int = _tick_ms_from_env()
    cancel_dir: str = os.getenv("CANCEL_DIR", os.path.join(os.getcwd(), "tmp_cancel_tokens"))
    worker_mode: str = os.getenv("WORKER_MODE", "thread")
    import_processor: str = os.getenv("IMPORT_PROCESSOR", "simulated")
    item_delay_ms: int = int(os.getenv("ITEM_DELAY_MS", "500"))
    channel_maxsize: int = int(os.getenv("CHANNEL_MAXSIZE", "100"))
    supabase_url: str = os.getenv("SUPABASE_URL", "")
    supabase_service_role_key: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    creatives_bucket: str = os.getenv("CREATIVES_BUCKET", "creatives")
    http_timeout_seconds: int = int(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
    rate_limit_requests: int = int(os.getenv("RATE_LIMIT_REQUESTS", "60"))
    rate_limit_window_seconds: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator("channel_maxsize", "http_timeout_seconds", "rate_limit_requests", "rate_limit_window_seconds")
    @classmethod
    def must_be_positive(cls, v):
        """Ensure sizes, timeouts and rate limits are positive integers. Prevents invalid config from env."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("item_delay_ms")
    @classmethod
    def must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("worker_mode")
    @classmethod
    def known_worker_mode(cls, v):
        v = (v or "").strip().lower()
        if v not in ("thread", "process"):
            raise ValueError("must be 'thread' or 'process'")
        return v

    @property
    def sse_tick_seconds(self) -> float:
        return self.sse_tick_ms / 1000.0


settings = Settings()
