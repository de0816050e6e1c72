"""Pytest fixtures and helpers for agentic-runtime tests."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from agentic_runtime.application.control_channel import ControlChannel, StepContext
from agentic_runtime.domain import LLMResponse, TokenUsage, ToolCallRequest
from agentic_runtime.infrastructure.tools.function_tools import FinalAnswerTool, FunctionTool


class ScriptedModel:
    """Fake Model: returns the scripted responses in order and records each call.

    A scripted item that is an exception instance is raised instead of returned.
    Once the script runs out, ``repeat`` (when given) is returned forever.
    """

    def __init__(self, responses: List[Any], repeat: Optional[LLMResponse] = None) -> None:
        self.responses = list(responses)
        self.repeat = repeat
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def generate(self, messages, *, stop_sequences=None, tools=None) -> LLMResponse:
        self.calls.append({"messages": list(messages), "tools": tools, "stop_sequences": stop_sequences})
        if self.responses:
            item = self.responses.pop(0)
        elif self.repeat is not None:
            item = self.repeat
        else:
            raise RuntimeError("ScriptedModel ran out of responses")
        if isinstance(item, BaseException):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


def tool_call(name: str, call_id: str = "c1", **arguments: Any) -> ToolCallRequest:
    return ToolCallRequest(call_id=call_id, tool_name=name, arguments=arguments)


def calls_response(*calls: ToolCallRequest, input_tokens: int = 10, output_tokens: int = 5) -> LLMResponse:
    return LLMResponse(
        content=None,
        tool_calls=list(calls),
        token_usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def text_response(content: str, input_tokens: int = 10, output_tokens: int = 5) -> LLMResponse:
    return LLMResponse(
        content=content,
        token_usage=TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def final_response(answer: Any, call_id: str = "fa", **kw: Any) -> LLMResponse:
    return calls_response(tool_call("final_answer", call_id, answer=answer), **kw)


def echo(text: str) -> str:
    """Echo the text back."""
    return f"echo:{text}"


def make_tools() -> list:
    """Echo tool plus the final-answer tool."""
    return [FunctionTool(echo), FinalAnswerTool()]


def step_context(channel: Optional[ControlChannel] = None, step_number: int = 1) -> StepContext:
    """Build a StepContext bound to the running loop (call from inside a test coroutine)."""
    return StepContext(
        channel=channel or ControlChannel(),
        step_number=step_number,
        loop=asyncio.get_running_loop(),
    )


@pytest.fixture(autouse=True)
def _reset_config_cache():
    """Clear the load_config LRU cache and the cached env before and after every test."""
    from agentic_runtime.config import loader as config_loader
    config_loader.load_config.cache_clear()
    config_loader._env = None
    yield
    config_loader.load_config.cache_clear()
    config_loader._env = None
