"""Unit tests for the SSE log stream generator."""
import asyncio
import re

from app.importer.log_buffer import LogBuffer
from app.importer.messages import TaskStatus
from app.importer.stream import format_sse, stream_task_logs

TICK = 0.01


def _collect(task_id, buf, store, timeout=5.0):
    async def run():
        out = []
        async for event in stream_task_logs(task_id, buf, store, TICK):
            out.append(event)
        return out

    return asyncio.run(asyncio.wait_for(run(), timeout))


def _lines(events):
    out = []
    for e in events:
        assert e.startswith("data: ") and e.endswith("\n\n")
        out.append(re.sub(r"^\[\d{2}:\d{2}:\d{2}\] ", "", e[len("data: "):-2]))
    return out


def test_format_sse_single_event():
    assert format_sse("hello") == "data: hello\n\n"
    assert format_sse("a\nb") == "data: a b\n\n"
    assert format_sse("") == "data: \n\n"


def test_stream_delivers_all_lines_then_finishes(cancel_store):
    buf = LogBuffer()
    buf.push("t1", "[worker] one")
    buf.push("t1", "[worker] two")
    buf.push("t1", "[worker] [COMPLETE] ✅ done", TaskStatus.COMPLETED)
    buf.push("t1", "[worker] [SHUTDOWN] bye", TaskStatus.COMPLETED)

    lines = _lines(_collect("t1", buf, cancel_store))
    assert lines == [
        "Log stream started for task t1",
        "[worker] one",
        "[worker] two",
        "[worker] [COMPLETE] ✅ done",
        "[worker] [SHUTDOWN] bye",
        "Log stream finished",
    ]
    # reading is non-destructive
    assert buf.size("t1") == 4


def test_stream_picks_up_lines_written_later(cancel_store):
    buf = LogBuffer()

    async def run():
        events = []

        async def writer():
            await asyncio.sleep(TICK * 3)
            buf.push("t1", "[worker] late line")
            await asyncio.sleep(TICK * 3)
            buf.push("t1", "[worker] [ERROR] ❌ failed", TaskStatus.FAILED)

        task = asyncio.ensure_future(writer())
        async for event in stream_task_logs("t1", buf, cancel_store, TICK):
            events.append(event)
        await task
        return events

    lines = _lines(asyncio.run(asyncio.wait_for(run(), 5)))
    assert lines[1:] == ["[worker] late line", "[worker] [ERROR] ❌ failed", "Log stream finished"]


def test_stream_cancel_clears_buffer_and_signal(cancel_store):
    buf = LogBuffer()
    buf.push("t1", "[worker] working")
    cancel_store.request("t1")

    lines = _lines(_collect("t1", buf, cancel_store))
    assert lines == [
        "Log stream started for task t1",
        "[worker] working",
        "⏹️ Import cancelled by user.",
        "Log stream finished",
    ]
    assert buf.read("t1") == []
    assert not cancel_store.is_set("t1")


def test_unknown_task_stream_stays_open(cancel_store):
    buf = LogBuffer()

    async def run():
        events = []

        async def consume():
            async for event in stream_task_logs("ghost", buf, cancel_store, TICK):
                events.append(event)

        try:
            await asyncio.wait_for(consume(), TICK * 20)
        except asyncio.TimeoutError:
            return events, True
        return events, False

    events, timed_out = asyncio.run(run())
    assert timed_out
    assert _lines(events) == ["Log stream started for task ghost"]


def test_unknown_task_stream_ends_on_cancel(cancel_store):
    cancel_store.request("ghost")
    lines = _lines(_collect("ghost", LogBuffer(), cancel_store))
    assert lines == ["Log stream started for task ghost", "⏹️ Import cancelled by user.", "Log stream finished"]


class FlakyStore:
    """Cancel store whose first reads fail; the stream must keep going."""

    def __init__(self, failures):
        self.failures = failures

    def is_set(self, task_id):
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk hiccup")
        return False

    def request(self, task_id):
        pass

    def clear(self, task_id):
        pass


def test_cancel_read_error_is_treated_as_not_cancelled():
    buf = LogBuffer()
    store = FlakyStore(failures=2)

    async def run():
        events = []

        async def writer():
            await asyncio.sleep(TICK * 5)
            buf.push("t1", "[worker] [SHUTDOWN] bye", TaskStatus.COMPLETED)

        task = asyncio.ensure_future(writer())
        async for event in stream_task_logs("t1", buf, store, TICK):
            events.append(event)
        await task
        return events

    lines = _lines(asyncio.run(asyncio.wait_for(run(), 5)))
    assert "⏹️ Import cancelled by user." not in lines
    assert lines[-2:] == ["[worker] [SHUTDOWN] bye", "Log stream finished"]
    assert store.failures == 0


def test_reused_task_id_stream_stops_at_previous_run_terminal_line(cancel_store):
    buf = LogBuffer()
    buf.push("t1", "[worker] [SHUTDOWN] first run", TaskStatus.COMPLETED)
    buf.push("t1", "[worker] [START] second run")

    async def run():
        events = []

        async def writer():
            await asyncio.sleep(TICK * 3)
            buf.push("t1", "[worker] second run later line")

        task = asyncio.ensure_future(writer())
        async for event in stream_task_logs("t1", buf, cancel_store, TICK):
            events.append(event)
        await task
        return events

    lines = _lines(asyncio.run(asyncio.wait_for(run(), 5)))
    assert lines == [
        "Log stream started for task t1",
        "[worker] [SHUTDOWN] first run",
        "[worker] [START] second run",
        "Log stream finished",
    ]
    assert buf.size("t1") == 3
