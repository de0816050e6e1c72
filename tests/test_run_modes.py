"""Tests for the streaming and suspendable driving modes."""
from __future__ import annotations

import pytest

from agentic_runtime.application.events import ListEventSink
from agentic_runtime.application.orchestrator import RunConfig, RunOrchestrator
from agentic_runtime.domain import (
    ActionStep,
    ChannelMisuseError,
    Confirmation,
    ControlResponse,
    RunResult,
    RunState,
    UserInput,
)
from agentic_runtime.infrastructure.tools.function_tools import AskUserTool, FinalAnswerTool, FunctionTool
from tests.conftest import ScriptedModel, calls_response, final_response, make_tools, tool_call


def _orchestrator(model, tools=None, **kw):
    return RunOrchestrator(RunConfig(model=model, tools=tools or make_tools(), **kw))


def _ask(question="Who are you?"):
    return calls_response(tool_call("ask_user", "q1", question=question))


# ---------------------------------------------------------------------------
# run_stream
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_is_lazy_and_exposes_result_after_exhaustion():
    model = ScriptedModel([
        calls_response(tool_call("echo", text="1")),
        calls_response(tool_call("echo", text="2")),
        final_response("done"),
    ])
    stream = _orchestrator(model).run_stream("task")

    first = await stream.__anext__()
    assert isinstance(first, ActionStep)
    assert first.step_number == 1
    assert len(model.calls) == 1
    assert stream.result is None

    rest = [step async for step in stream]
    assert [s.step_number for s in rest] == [2, 3]
    assert stream.result.state is RunState.SUCCESS
    assert stream.result.output == "done"


@pytest.mark.asyncio
async def test_stream_is_not_restartable():
    stream = _orchestrator(ScriptedModel([final_response("x")])).run_stream("task")
    assert len([s async for s in stream]) == 1
    assert [s async for s in stream] == []


@pytest.mark.asyncio
async def test_stream_keeps_yielded_steps_when_a_later_step_fails():
    model = ScriptedModel([calls_response(tool_call("echo", text="ok")), RuntimeError("died")])
    stream = _orchestrator(model).run_stream("task")
    steps = [s async for s in stream]
    assert len(steps) == 1
    assert stream.result.state is RunState.ERROR
    assert stream.result.steps == steps


# ---------------------------------------------------------------------------
# run_suspendable
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_suspendable_forwards_request_and_resumes_with_answer():
    sink = ListEventSink()
    model = ScriptedModel([_ask(), final_response("hi Ada")])
    orch = _orchestrator(model, tools=make_tools() + [AskUserTool()], event_sink=sink)
    handle = orch.run_suspendable("greet the user")

    request = await handle.__anext__()
    assert isinstance(request, UserInput)
    assert request.prompt == "Who are you?"
    assert orch.state is RunState.SUSPENDED

    await handle.respond(ControlResponse.respond(request.id, "Ada"))

    step1 = await handle.__anext__()
    assert isinstance(step1, ActionStep)
    assert step1.observations == "ask_user: Ada"
    assert orch.state is RunState.RUNNING

    items = [item async for item in handle]
    assert isinstance(items[-1], RunResult)
    assert items[-1].output == "hi Ada"
    assert handle.result is items[-1]
    assert "control_yielded" in sink.kinds and "control_resumed" in sink.kinds


@pytest.mark.asyncio
async def test_suspendable_advances_only_when_pulled():
    model = ScriptedModel([calls_response(tool_call("echo", text="1")), final_response("x")])
    handle = _orchestrator(model).run_suspendable("task")
    first = await handle.__anext__()
    assert isinstance(first, ActionStep)
    assert len(model.calls) == 1
    await handle.aclose()


@pytest.mark.asyncio
async def test_pulling_with_pending_request_is_misuse():
    model = ScriptedModel([_ask(), final_response("x")])
    handle = _orchestrator(model, tools=make_tools() + [AskUserTool()]).run_suspendable("task")
    request = await handle.__anext__()
    with pytest.raises(ChannelMisuseError):
        await handle.__anext__()
    await handle.respond(ControlResponse.respond(request.id, "ok"))
    items = [item async for item in handle]
    assert items[-1].success


@pytest.mark.asyncio
async def test_respond_with_wrong_id_is_misuse():
    model = ScriptedModel([_ask(), final_response("x")])
    handle = _orchestrator(model, tools=make_tools() + [AskUserTool()]).run_suspendable("task")
    await handle.__anext__()
    with pytest.raises(ChannelMisuseError):
        await handle.respond(ControlResponse.respond("not-the-request", "ok"))
    await handle.aclose()


@pytest.mark.asyncio
async def test_denied_confirmation_reaches_the_tool():
    async def deploy(context) -> str:
        ok = await context.request_confirmation("deploy", "Deploy to prod", reversible=False)
        return "deployed" if ok else "cancelled"

    model = ScriptedModel([calls_response(tool_call("deploy")), final_response("stopped")])
    handle = _orchestrator(model, tools=[FunctionTool(deploy), FinalAnswerTool()]).run_suspendable("ship")

    request = await handle.__anext__()
    assert isinstance(request, Confirmation)
    assert request.dangerous
    await handle.respond(ControlResponse.deny(request.id))

    step = await handle.__anext__()
    assert step.tool_outputs[0].output == "cancelled"
    items = [item async for item in handle]
    assert items[-1].state is RunState.SUCCESS


@pytest.mark.asyncio
async def test_blocking_run_uses_fallback_for_same_request():
    model = ScriptedModel([_ask(), final_response("x")])
    orch = _orchestrator(model, tools=make_tools() + [AskUserTool(default_answer="anonymous")])
    result = await orch.run("task")
    assert result.success
    assert result.steps[0].observations == "ask_user: anonymous"


# ---------------------------------------------------------------------------
# Closing a run early
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_closing_a_stream_early_leaves_a_terminal_state():
    model = ScriptedModel([], repeat=calls_response(tool_call("echo", text="again")))
    orch = _orchestrator(model, max_steps=10)
    stream = orch.run_stream("task")
    await stream.__anext__()
    assert orch.state is RunState.RUNNING

    await stream.aclose()

    assert orch.state is RunState.ERROR
    # The orchestrator is free for the next run.
    model.responses = [final_response("next")]
    result = await orch.run("again")
    assert result.output == "next"


@pytest.mark.asyncio
async def test_closing_a_suspended_run_leaves_a_terminal_state():
    model = ScriptedModel([_ask(), final_response("x")])
    orch = _orchestrator(model, tools=make_tools() + [AskUserTool()])
    handle = orch.run_suspendable("task")
    await handle.__anext__()
    assert orch.state is RunState.SUSPENDED

    await handle.aclose()

    assert orch.state is RunState.ERROR
    model.responses = [final_response("fresh")]
    result = await orch.run("again")
    assert result.success


@pytest.mark.asyncio
async def test_closing_after_a_step_leaves_a_terminal_state():
    model = ScriptedModel([calls_response(tool_call("echo", text="1")), final_response("x")])
    orch = _orchestrator(model)
    handle = orch.run_suspendable("task")
    assert isinstance(await handle.__anext__(), ActionStep)

    await handle.aclose()

    assert orch.state is RunState.ERROR
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_orchestrator_is_reusable_after_a_finished_stream():
    model = ScriptedModel([final_response("one"), final_response("two")])
    orch = _orchestrator(model)
    stream = orch.run_stream("first")
    assert len([s async for s in stream]) == 1

    result = await orch.run("second")

    assert stream.result.output == "one"
    assert result.output == "two"
