import sys
from pathlib import Path
import json
import pytest

# Ensure repo root is on sys.path so `import app...` works in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def pretty_json(obj) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False, sort_keys=True)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """
    Attach request/response payloads into pytest-html report.

    In tests, store payloads like:
      request_log = {"method": "...", "url": "...", "json": {...}}
      response_log = {"status_code": 200, "json": {...}}
      item._api_logs = [{"title": "...", "request": ..., "response": ...}, ...]
    """
    outcome = yield
    rep = outcome.get_result()

    if rep.when != "call":
        return

    api_logs = getattr(item, "_api_logs", None)
    if not api_logs:
        return

    # Only attach if pytest-html is installed/enabled
    extras = getattr(rep, "extra", [])

    try:
        import pytest_html  # noqa: F401
        from pytest_html import extras as html_extras
    except Exception:
        rep.extra = extras
        return

    for entry in api_logs:
        title = entry.get("title", "API Call")
        req = entry.get("request", {})
        res = entry.get("response", {})

        html = f"""
        <div style="font-family: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, 'Liberation Mono', monospace;">
          <h4 style="margin:8px 0;">{title}</h4>

          <details style="margin:6px 0;">
            <summary><b>Request</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(req)}</pre>
          </details>

          <details style="margin:6px 0;">
            <summary><b>Response</b></summary>
            <pre style="background:#0b1020;color:#cfe3ff;padding:10px;border-radius:8px;overflow:auto;">{pretty_json(res)}</pre>
          </details>
        </div>
        """
        extras.append(html_extras.html(html))

    rep.extra = extras


# -------------------------
# Shared fixtures
# -------------------------

@pytest.fixture
def cancel_dir(tmp_path):
    return str(tmp_path / "cancel_tokens")


@pytest.fixture
def cancel_store(cancel_dir):
    from app.importer.cancel_store import FileCancelStore

    return FileCancelStore(cancel_dir)


@pytest.fixture
def log_buffer():
    from app.importer.log_buffer import LogBuffer

    return LogBuffer()


@pytest.fixture
def launcher(log_buffer, cancel_store):
    """Thread-mode launcher whose simulated items take no time."""
    from app.importer.launcher import ImportLauncher
    from app.importer.processors import build_processor_factory

    return ImportLauncher(log_buffer, cancel_store, build_processor_factory("simulated", 0))


@pytest.fixture
def app_state(monkeypatch, log_buffer, cancel_store, launcher):
    """Point the API module at fresh per-test state, a short stream tick and a clean rate limiter."""
    import app.main as main

    monkeypatch.setattr(main, "log_buffer", log_buffer)
    monkeypatch.setattr(main, "cancel_store", cancel_store)
    monkeypatch.setattr(main, "launcher", launcher)
    monkeypatch.setattr(main.settings, "sse_tick_ms", 20)
    main.rate_limiter.reset()
    yield main
    main.rate_limiter.reset()
