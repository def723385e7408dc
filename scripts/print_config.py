#!/usr/bin/env python3
"""Print the effective import settings (from config). Run from repo root: python scripts/print_config.py"""
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from app.core.config import settings


def main():
    """Print stream tick, cancel directory, worker mode, processor, channel bound and rate limit."""
    print("Import settings")
    print("---------------")
    print(f"  SSE_TICK_MS           = {settings.sse_tick_ms} ms (log stream poll interval)")
    print(f"  CANCEL_DIR            = {settings.cancel_dir}")
    print(f"  WORKER_MODE           = {settings.worker_mode}")
    print(f"  IMPORT_PROCESSOR      = {settings.import_processor}")
    print(f"  ITEM_DELAY_MS         = {settings.item_delay_ms} ms (simulated processor only)")
    print(f"  CHANNEL_MAXSIZE       = {settings.channel_maxsize} (worker -> coordinator messages)")
    print(f"  Rate limit            = {settings.rate_limit_requests} requests / {settings.rate_limit_window_seconds} s (per client IP)")
    print(f"  SUPABASE_URL          = {settings.supabase_url or '(not set)'}")
    print(f"  Service role key      = {'set' if settings.supabase_service_role_key else '(not set)'}")
    print("")
    print("Env: SSE_TICK_MS, CANCEL_DIR, WORKER_MODE, IMPORT_PROCESSOR, ... (see .env.example)")


if __name__ == "__main__":
    main()
