"""Tool dispatcher: run the tool calls of one model response, in order, without failing the batch.

A single call runs inline on the current task. Several calls run concurrently,
bounded by ``max_concurrency``; outputs always come back in request order.
Synchronous tools run in worker threads so they never stall the event loop.

A tool that raises produces an observation ``"<tool>: <error>"`` and a None
output; its siblings are unaffected. Control-channel errors are the only
exceptions that escape, and only after every sibling has finished.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Optional, Sequence

from agentic_runtime.application.control_channel import StepContext
from agentic_runtime.application.ports import Tool
from agentic_runtime.config.constants import (
    DEFAULT_MAX_TOOL_CONCURRENCY,
    FINAL_ANSWER_TOOL_NAME,
    MAX_OBSERVATION_CHARS,
)
from agentic_runtime.domain import (
    ChannelMisuseError,
    ControlFlowError,
    ToolCallRequest,
    ToolOutput,
    UnknownToolError,
)
from agentic_runtime.infrastructure.telemetry import get_tracer

logger = logging.getLogger(__name__)

# Raised through the dispatcher untouched: they are protocol signals, not tool failures.
_PROPAGATE = (ControlFlowError, ChannelMisuseError)


def _render_observation(tool_name: str, output: Any) -> str:
    text = f"{tool_name}: {output}"
    if len(text) > MAX_OBSERVATION_CHARS:
        text = text[:MAX_OBSERVATION_CHARS] + "\n[truncated]"
    return text


class ToolDispatcher:
    def __init__(
        self,
        tools: Dict[str, Tool],
        *,
        max_concurrency: int = DEFAULT_MAX_TOOL_CONCURRENCY,
        final_answer_tool: str = FINAL_ANSWER_TOOL_NAME,
        raise_on_unknown_tool: bool = False,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.tools = tools
        self.max_concurrency = max_concurrency
        self.final_answer_tool = final_answer_tool
        self.raise_on_unknown_tool = raise_on_unknown_tool

    async def dispatch(
        self,
        tool_calls: Sequence[ToolCallRequest],
        context: StepContext,
    ) -> List[ToolOutput]:
        """Execute ``tool_calls`` and return one ToolOutput per call, index for index."""
        if not tool_calls:
            return []
        if len(tool_calls) == 1:
            return [await self._run_one(tool_calls[0], context)]

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(tc: ToolCallRequest) -> ToolOutput:
            async with semaphore:
                return await self._run_one(tc, context)

        results = await asyncio.gather(
            *(bounded(tc) for tc in tool_calls),
            return_exceptions=True,
        )
        # Everything non-propagating was already converted inside _run_one, so any
        # exception left here is a control signal (or UnknownToolError when asked to raise).
        for res in results:
            if isinstance(res, BaseException):
                raise res
        return list(results)

    async def _run_one(self, tc: ToolCallRequest, context: StepContext) -> ToolOutput:
        tool = self.tools.get(tc.tool_name)
        if tool is None:
            exc = UnknownToolError(tc.tool_name, sorted(self.tools))
            if self.raise_on_unknown_tool:
                raise exc
            logger.warning("Step %s: %s", context.step_number, exc)
            return ToolOutput(
                call_id=tc.call_id,
                tool_name=tc.tool_name,
                output=None,
                observation=f"{tc.tool_name}: {exc}",
            )

        tracer = get_tracer()
        error_type: Optional[str] = None
        error_message = ""
        with tracer.start_as_current_span("agent.tool_call") as span:
            span.set_attribute("tool_name", tc.tool_name)
            span.set_attribute("step", context.step_number)
            try:
                tool.validate_arguments(tc.arguments)
                output = await self._invoke(tool, tc.arguments, context)
            except _PROPAGATE:
                raise
            except PermissionError as exc:
                error_type, error_message = "permission", str(exc)
            except (ValueError, TypeError) as exc:
                error_type, error_message = "invalid_args", str(exc)
            except OSError as exc:
                error_type, error_message = "io_error", str(exc)
            except Exception as exc:  # noqa: BLE001
                error_type, error_message = "unexpected", f"{type(exc).__name__}: {exc}"
            if error_type is not None:
                span.set_attribute("error_type", error_type)

        if error_type is not None:
            logger.warning(
                "Step %s: tool %r error (%s): %s",
                context.step_number, tc.tool_name, error_type, error_message,
            )
            return ToolOutput(
                call_id=tc.call_id,
                tool_name=tc.tool_name,
                output=None,
                observation=f"{tc.tool_name}: {error_message}",
            )

        is_final = tc.tool_name == self.final_answer_tool
        logger.debug("Step %s: tool %r ok (final=%s)", context.step_number, tc.tool_name, is_final)
        return ToolOutput(
            call_id=tc.call_id,
            tool_name=tc.tool_name,
            output=output,
            observation=_render_observation(tc.tool_name, output),
            is_final_answer=is_final,
        )

    async def _invoke(self, tool: Tool, arguments: Dict[str, Any], context: StepContext) -> Any:
        if inspect.iscoroutinefunction(tool.call):
            return await tool.call(arguments, context)
        result = await asyncio.to_thread(tool.call, arguments, context)
        if inspect.isawaitable(result):
            return await result
        return result
