"""Tests for ToolDispatcher: ordering, isolation, bounded concurrency, control-error propagation."""
from __future__ import annotations

import asyncio
import threading

import pytest

from agentic_runtime.application.control_channel import ControlChannel
from agentic_runtime.application.dispatcher import ToolDispatcher
from agentic_runtime.domain import Confirmation, ControlFlowError, UnknownToolError
from agentic_runtime.infrastructure.tools.function_tools import FinalAnswerTool, FunctionTool
from tests.conftest import step_context, tool_call


def _registry(*tools):
    return {t.name: t for t in tools}


# ---------------------------------------------------------------------------
# Ordering and isolation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_empty_batch_returns_empty_list():
    dispatcher = ToolDispatcher({})
    assert await dispatcher.dispatch([], step_context()) == []


@pytest.mark.asyncio
async def test_outputs_follow_request_order_under_mixed_latency():
    async def slow(label: str, delay: float) -> str:
        await asyncio.sleep(delay)
        return label

    dispatcher = ToolDispatcher(_registry(FunctionTool(slow)), max_concurrency=4)
    delays = [0.05, 0.0, 0.03, 0.01, 0.02]
    calls = [
        tool_call("slow", f"c{i}", label=f"L{i}", delay=d) for i, d in enumerate(delays)
    ]
    outputs = await dispatcher.dispatch(calls, step_context())

    assert [o.call_id for o in outputs] == [f"c{i}" for i in range(5)]
    assert [o.output for o in outputs] == [f"L{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_one_failing_call_does_not_affect_siblings():
    def a() -> str:
        return "A-ok"

    def b() -> str:
        raise RuntimeError("B exploded")

    def c() -> str:
        return "C-ok"

    dispatcher = ToolDispatcher(_registry(FunctionTool(a), FunctionTool(b), FunctionTool(c)))
    outputs = await dispatcher.dispatch(
        [tool_call("a", "1"), tool_call("b", "2"), tool_call("c", "3")],
        step_context(),
    )

    assert len(outputs) == 3
    assert outputs[0].output == "A-ok"
    assert outputs[2].output == "C-ok"
    assert outputs[1].output is None
    assert outputs[1].observation.startswith("b: ")
    assert "B exploded" in outputs[1].observation


@pytest.mark.asyncio
async def test_single_failing_call_becomes_observation():
    def broken(path: str) -> str:
        raise PermissionError(f"denied: {path}")

    dispatcher = ToolDispatcher(_registry(FunctionTool(broken)))
    [out] = await dispatcher.dispatch([tool_call("broken", path="/etc")], step_context())
    assert out.output is None
    assert out.observation == "broken: denied: /etc"


@pytest.mark.asyncio
async def test_invalid_arguments_are_reported_not_raised():
    def needs_x(x: int) -> int:
        return x

    dispatcher = ToolDispatcher(_registry(FunctionTool(needs_x)))
    [out] = await dispatcher.dispatch([tool_call("needs_x", y=1)], step_context())
    assert out.output is None
    assert "Unexpected argument" in out.observation


# ---------------------------------------------------------------------------
# Unknown tools and final answer
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_tool_becomes_observation_by_default():
    dispatcher = ToolDispatcher(_registry(FinalAnswerTool()))
    [out] = await dispatcher.dispatch([tool_call("nope")], step_context())
    assert out.output is None
    assert out.observation.startswith("nope: ")
    assert "Unknown tool" in out.observation
    assert "final_answer" in out.observation


@pytest.mark.asyncio
async def test_unknown_tool_raises_when_configured():
    dispatcher = ToolDispatcher({}, raise_on_unknown_tool=True)
    with pytest.raises(UnknownToolError):
        await dispatcher.dispatch([tool_call("nope")], step_context())


@pytest.mark.asyncio
async def test_final_answer_tool_output_is_flagged():
    def echo(text: str) -> str:
        return text

    dispatcher = ToolDispatcher(_registry(FunctionTool(echo), FinalAnswerTool()))
    outputs = await dispatcher.dispatch(
        [tool_call("echo", "1", text="hi"), tool_call("final_answer", "2", answer="42")],
        step_context(),
    )
    assert [o.is_final_answer for o in outputs] == [False, True]
    assert outputs[1].output == "42"


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    active = 0
    peak = 0

    async def work(n: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return n

    dispatcher = ToolDispatcher(_registry(FunctionTool(work)), max_concurrency=2)
    outputs = await dispatcher.dispatch(
        [tool_call("work", f"c{i}", n=i) for i in range(6)], step_context()
    )
    assert [o.output for o in outputs] == list(range(6))
    assert peak == 2


@pytest.mark.asyncio
async def test_sync_tools_run_off_the_event_loop_thread():
    loop_thread = threading.get_ident()
    seen = []

    def record() -> str:
        seen.append(threading.get_ident())
        return "ok"

    dispatcher = ToolDispatcher(_registry(FunctionTool(record)))
    await dispatcher.dispatch([tool_call("record", "1"), tool_call("record", "2")], step_context())
    assert len(seen) == 2
    assert loop_thread not in seen


def test_max_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        ToolDispatcher({}, max_concurrency=0)


# ---------------------------------------------------------------------------
# Control-channel errors
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_control_flow_error_propagates_after_siblings_finish():
    finished = []

    async def dangerous(context) -> str:
        await context.request_confirmation("rm", "delete everything", reversible=False)
        return "deleted"

    async def slow() -> str:
        await asyncio.sleep(0.02)
        finished.append("slow")
        return "done"

    channel = ControlChannel()
    dispatcher = ToolDispatcher(_registry(FunctionTool(dangerous), FunctionTool(slow)))
    with channel.step_scope(1):
        with pytest.raises(ControlFlowError) as exc_info:
            await dispatcher.dispatch(
                [tool_call("dangerous", "1"), tool_call("slow", "2")],
                step_context(channel),
            )
    assert exc_info.value.request_type == Confirmation.request_type
    assert finished == ["slow"]
