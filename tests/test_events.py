"""Tests for event records and sinks."""
from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from agentic_runtime.application.events import (
    CallbackEventSink,
    ListEventSink,
    QueueEventSink,
    RunEvent,
    emit,
)


def test_emit_without_sink_is_noop():
    emit(None, "run_start", {})


def test_queue_sink_drops_when_full():
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)
    sink = QueueEventSink(queue)
    emit(sink, "a", {"n": 1})
    emit(sink, "b", {"n": 2})
    assert queue.qsize() == 1
    event = queue.get_nowait()
    assert isinstance(event, RunEvent)
    assert event.kind == "a"


def test_callback_sink_receives_event_with_step():
    callback = MagicMock()
    emit(CallbackEventSink(callback), "step_complete", {"outcome": "success"}, step=2)
    event = callback.call_args.args[0]
    assert event.kind == "step_complete"
    assert event.step == 2
    assert event.data == {"outcome": "success"}


def test_sink_exception_is_swallowed():
    emit(CallbackEventSink(MagicMock(side_effect=RuntimeError("down"))), "run_start", {})


def test_list_sink_records_kinds():
    sink = ListEventSink()
    emit(sink, "run_start", {})
    emit(sink, "run_complete", {})
    assert sink.kinds == ["run_start", "run_complete"]
