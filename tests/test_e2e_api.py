import asyncio
import re
import threading

import pytest
from fastapi.testclient import TestClient

from app.guardrails.rate_limit import SimpleRateLimiter
from app.importer.launcher import ImportLauncher
from app.importer.processors import SimulatedProcessor
from app.main import app


@pytest.fixture
def client(app_state):
    return TestClient(app)


def _log(item, title: str, request: dict, response: dict):
    """
    Store logs on the test item so conftest can attach to pytest-html report.
    """
    logs = getattr(item, "_api_logs", [])
    logs.append({"title": title, "request": request, "response": response})
    item._api_logs = logs


def _post(client: TestClient, item, url: str, body) -> "object":
    resp = client.post(url, json=body)
    _log(
        item,
        f"POST {url}",
        {"method": "POST", "url": url, "json": body},
        {"status_code": resp.status_code, "json": resp.json()},
    )
    return resp


def _sse_lines(body: str) -> list:
    """Parse SSE body into log lines without their [HH:MM:SS] prefix."""
    lines = []
    for block in body.split("\n\n"):
        if not block.startswith("data: "):
            continue
        lines.append(re.sub(r"^\[\d{2}:\d{2}:\d{2}\] ", "", block[len("data: "):]))
    return lines


def test_root_and_health(client: TestClient):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").status_code == 200


def test_config_reports_tick(client: TestClient):
    data = client.get("/config").json()
    assert data["sse_tick_ms"] == 20
    assert data["worker_mode"] in ("thread", "process")


# -------------------------
# Submit validation
# -------------------------

@pytest.mark.parametrize(
    "body, message",
    [
        ({"taskId": "t1"}, "Field 'items' must be a non-empty array"),
        ({"taskId": "t1", "items": []}, "Field 'items' must be a non-empty array"),
        ({"items": [{"a": 1}]}, "Missing taskId"),
        ({"items": [{"a": 1}], "taskId": "   "}, "Missing taskId"),
    ],
)
def test_submit_rejects_invalid_body(client: TestClient, request, body, message):
    resp = _post(client, request.node, "/import", body)
    assert resp.status_code == 400, resp.text
    assert resp.json() == {"message": message}
    assert not client.get("/import/tasks/t1").json()["running"]


def test_submit_rejects_non_json_body(client: TestClient):
    resp = client.post("/import", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Field 'items' must be a non-empty array"}


def test_submit_rejects_wrongly_typed_field(client: TestClient):
    resp = client.post("/import", json={"taskId": "t1", "items": "nope"})
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("Invalid field 'items'")


# -------------------------
# Submit + stream
# -------------------------

def test_submit_and_stream_full_log(client: TestClient, app_state, request):
    body = {"taskId": "job-1", "businessId": "biz-9", "maxAds": 5, "items": [{"id": 1}, {"id": 2}]}
    resp = _post(client, request.node, "/import", body)
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"taskId": "job-1", "saved": 0, "errors": 0}
    assert resp.headers.get("x-request-id")

    assert app_state.launcher.join("job-1", timeout=5)

    stream = client.get("/import/logs/job-1")
    assert stream.status_code == 200
    assert stream.headers["content-type"].startswith("text/event-stream")
    assert stream.headers["cache-control"] == "no-cache"

    lines = _sse_lines(stream.text)
    assert lines[0] == "Log stream started for task job-1"
    assert lines[1] == "[worker] [START] Import process initiated."
    assert "[worker] Business ID: biz-9" in lines
    assert "[worker] Max ads allowed: 5" in lines
    assert lines.index("[worker] [ITEM] Processing item 1 of 2...") < lines.index("[worker] [ITEM] Processing item 2 of 2...")
    assert lines[-3] == "[worker] [COMPLETE] ✅ Import complete for business biz-9. 2 items processed."
    assert lines[-2] == "[worker] [SHUTDOWN] Worker exiting for task job-1."
    assert lines[-1] == "Log stream finished"

    status = client.get("/import/tasks/job-1").json()
    assert status == {
        "taskId": "job-1",
        "running": False,
        "logLines": len(lines) - 2,
        "cancelRequested": False,
        "status": "completed",
    }


def test_stream_can_be_replayed(client: TestClient, app_state):
    client.post("/import", json={"taskId": "job-2", "items": [1]})
    assert app_state.launcher.join("job-2", timeout=5)
    first = _sse_lines(client.get("/import/logs/job-2").text)
    second = _sse_lines(client.get("/import/logs/job-2").text)
    assert first[1:-1] == second[1:-1]


# -------------------------
# Cancel
# -------------------------

def test_cancel_requires_task_id(client: TestClient, request):
    resp = _post(client, request.node, "/import/cancel", {})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Missing taskId"}


def test_cancel_is_idempotent_and_ends_stream(client: TestClient, app_state, request):
    for _ in range(2):
        resp = _post(client, request.node, "/import/cancel", {"taskId": "ghost"})
        assert resp.status_code == 200
        assert resp.json()["taskId"] == "ghost"
        assert resp.json()["message"].startswith("Cancel requested")

    assert client.get("/import/tasks/ghost").json()["cancelRequested"] is True

    lines = _sse_lines(client.get("/import/logs/ghost").text)
    assert lines == [
        "Log stream started for task ghost",
        "⏹️ Import cancelled by user.",
        "Log stream finished",
    ]
    # the stream consumed the signal
    assert not app_state.cancel_store.is_set("ghost")


# -------------------------
# Rate limit
# -------------------------

def test_rate_limit_on_submit(client: TestClient, app_state, monkeypatch):
    monkeypatch.setattr(app_state, "rate_limiter", SimpleRateLimiter(max_requests=2, window_seconds=60))
    codes = [client.post("/import", json={"taskId": "x"}).status_code for _ in range(3)]
    assert codes == [400, 400, 429]


# -------------------------
# Pass-through fields
# -------------------------

def test_fractional_max_ads_is_passed_through(client: TestClient, app_state, request):
    resp = _post(client, request.node, "/import", {"taskId": "m1", "items": [{}], "maxAds": 2.5})
    assert resp.status_code == 200, resp.text
    assert resp.json()["taskId"] == "m1"

    assert app_state.launcher.join("m1", timeout=5)
    lines = [e.text.split(" ", 1)[1] for e in app_state.log_buffer.read("m1")]
    assert "[worker] Max ads allowed: 2.5" in lines


# -------------------------
# Running worker: fire-and-forget + cancel at item boundary
# -------------------------

class GatedProcessor(SimulatedProcessor):
    """Signals when an item starts, then holds it until the gate opens."""

    def __init__(self, task, log, started, gate):
        super().__init__(task, log, delay_seconds=0)
        self.started = started
        self.gate = gate

    def process(self, index, item):
        self.started.set()
        self.gate.wait(5)
        super().process(index, item)


def test_cancel_running_import_stops_at_next_item(client: TestClient, app_state, monkeypatch, request):
    started = threading.Event()
    gate = threading.Event()
    launcher = ImportLauncher(
        app_state.log_buffer,
        app_state.cancel_store,
        lambda task, log: GatedProcessor(task, log, started, gate),
    )
    monkeypatch.setattr(app_state, "launcher", launcher)

    try:
        resp = _post(client, request.node, "/import", {"taskId": "t2", "businessId": "biz", "items": [{}, {}, {}]})
        # returned while the first item is still held
        assert resp.status_code == 200, resp.text
        assert not gate.is_set()
        assert started.wait(5)
        assert client.get("/import/tasks/t2").json()["running"] is True

        resp = _post(client, request.node, "/import/cancel", {"taskId": "t2"})
        assert resp.status_code == 200
    finally:
        gate.set()
    assert launcher.join("t2", timeout=5)

    lines = [e.text.split(" ", 1)[1] for e in app_state.log_buffer.read("t2")]
    assert "[worker] [ITEM] Finished processing item 1." in lines
    assert "[worker] [ITEM] Processing item 2 of 3..." not in lines
    assert lines[-3:] == [
        "[worker] [CANCEL] Cancel token detected for task t2.",
        "[worker] [CANCEL] ⏹️ Import cancelled by user at item 2 of 3.",
        "[worker] [SHUTDOWN] Worker exiting for task t2.",
    ]
    assert not any("[COMPLETE]" in line for line in lines)
    assert app_state.log_buffer.last_status("t2").value == "cancelled"
    assert not app_state.cancel_store.is_set("t2")


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def test_launch_and_cancel_write_run_off_the_event_loop(client: TestClient, app_state, monkeypatch):
    seen = {}
    real_launch = app_state.launcher.launch
    real_request = app_state.cancel_store.request

    def launch(task):
        seen["launch"] = _loop_running()
        return real_launch(task)

    def cancel_request(task_id):
        seen["cancel"] = _loop_running()
        return real_request(task_id)

    monkeypatch.setattr(app_state.launcher, "launch", launch)
    monkeypatch.setattr(app_state.cancel_store, "request", cancel_request)

    assert client.post("/import", json={"taskId": "off", "items": [1]}).status_code == 200
    assert client.post("/import/cancel", json={"taskId": "off"}).status_code == 200
    assert app_state.launcher.join("off", timeout=5)
    assert seen == {"launch": False, "cancel": False}
