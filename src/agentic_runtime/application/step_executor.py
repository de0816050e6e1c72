"""Step executor: one model call, interpreted into exactly one ActionStep.

The response is classified into a ``ResponseShape`` and each shape has its own
branch:

* ``TOOL_CALLS`` → dispatch the calls, fold their outputs into observations.
* ``CODE``       → run the fenced code in the sandbox, fold its result.
* ``EMPTY``      → record a structural error; no collaborator is called.

The model is called once and never retried. Timing and token usage are
recorded on every path that returns a step. Exceptions from the model, the
dispatcher or the sandbox propagate to the orchestrator; when the model call
had already succeeded, the exception carries its usage as
``step_token_usage`` (and the step's ``step_timing``).
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from agentic_runtime.application.control_channel import StepContext
from agentic_runtime.application.dispatcher import ToolDispatcher
from agentic_runtime.application.memory import AgentMemory
from agentic_runtime.application.ports import Model, Sandbox
from agentic_runtime.config.constants import SANDBOX_DEFAULT_TIMEOUT_S
from agentic_runtime.domain import (
    ActionStep,
    LLMResponse,
    SandboxResult,
    StepStructureError,
    Timing,
)
from agentic_runtime.infrastructure.telemetry import get_tracer

logger = logging.getLogger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(?:python|py)[ \t]*\n(.*?)```", re.DOTALL)

_EMPTY_RESPONSE_ERROR = (
    "The model response contained neither tool calls nor a code block. "
    "Call a tool (or write a ```python code block) to make progress."
)


class ResponseShape(str, Enum):
    TOOL_CALLS = "tool_calls"
    CODE = "code"
    EMPTY = "empty"


def extract_code(content: Optional[str]) -> Optional[str]:
    """Return the concatenated ```python blocks in ``content``, or None when there are none."""
    if not content:
        return None
    blocks = [b.strip() for b in _CODE_BLOCK_RE.findall(content)]
    blocks = [b for b in blocks if b]
    if not blocks:
        return None
    return "\n\n".join(blocks)


def classify_response(response: LLMResponse, code_enabled: bool) -> ResponseShape:
    if response.has_tool_calls:
        return ResponseShape.TOOL_CALLS
    if code_enabled and extract_code(response.content) is not None:
        return ResponseShape.CODE
    return ResponseShape.EMPTY


class StepExecutor:
    def __init__(
        self,
        model: Model,
        dispatcher: ToolDispatcher,
        *,
        tool_definitions: Optional[List[Dict[str, Any]]] = None,
        sandbox: Optional[Sandbox] = None,
        sandbox_timeout_s: int = SANDBOX_DEFAULT_TIMEOUT_S,
        stop_sequences: Optional[List[str]] = None,
    ) -> None:
        self.model = model
        self.dispatcher = dispatcher
        self.tool_definitions = tool_definitions
        self.sandbox = sandbox
        self.sandbox_timeout_s = sandbox_timeout_s
        self.stop_sequences = stop_sequences

    async def execute(
        self,
        memory: AgentMemory,
        step_number: int,
        context: StepContext,
    ) -> ActionStep:
        timing = Timing.start_now()
        tracer = get_tracer()
        with tracer.start_as_current_span("agent.step") as span:
            span.set_attribute("step", step_number)
            messages = memory.to_messages()
            logger.debug("Step %d: %d messages in context", step_number, len(messages))

            # In code mode the tools are called from inside the code, not natively.
            response = await self.model.generate(
                messages,
                stop_sequences=self.stop_sequences,
                tools=None if self.sandbox is not None else self.tool_definitions,
            )
            shape = classify_response(response, code_enabled=self.sandbox is not None)
            span.set_attribute("shape", shape.value)

            try:
                if shape is ResponseShape.TOOL_CALLS:
                    step = await self._run_tool_calls(response, step_number, timing, context)
                elif shape is ResponseShape.CODE:
                    step = await self._run_code(response, step_number, timing)
                else:
                    logger.warning("Step %d: %s", step_number, _EMPTY_RESPONSE_ERROR)
                    step = ActionStep(
                        step_number=step_number,
                        timing=timing.stop(),
                        token_usage=response.token_usage,
                        model_output=response,
                        error=str(StepStructureError(_EMPTY_RESPONSE_ERROR)),
                    )
            except Exception as exc:
                # The model call is already paid for; the orchestrator adds it to the run total.
                exc.step_token_usage = response.token_usage
                exc.step_timing = timing.stop()
                raise

            span.set_attribute("final", step.is_final_answer)
        return step

    async def _run_tool_calls(
        self,
        response: LLMResponse,
        step_number: int,
        timing: Timing,
        context: StepContext,
    ) -> ActionStep:
        outputs = await self.dispatcher.dispatch(response.tool_calls, context)
        final = next((o for o in outputs if o.is_final_answer), None)
        return ActionStep(
            step_number=step_number,
            timing=timing.stop(),
            token_usage=response.token_usage,
            model_output=response,
            tool_calls=list(response.tool_calls),
            tool_outputs=outputs,
            observations="\n".join(o.observation for o in outputs),
            action_output=final.output if final is not None else (outputs[-1].output if outputs else None),
            is_final_answer=final is not None,
        )

    async def _run_code(
        self,
        response: LLMResponse,
        step_number: int,
        timing: Timing,
    ) -> ActionStep:
        code = extract_code(response.content)
        result: SandboxResult = await self.sandbox.execute(code, "python", self.sandbox_timeout_s)
        if result.error:
            logger.warning("Step %d: code execution failed: %s", step_number, result.error)
        observations = result.logs or ""
        if result.output is not None and not result.error:
            observations = f"{observations}\nLast output from code snippet:\n{result.output}".lstrip("\n")
        return ActionStep(
            step_number=step_number,
            timing=timing.stop(),
            token_usage=response.token_usage,
            model_output=response,
            code_action=code,
            observations=observations or None,
            action_output=result.output,
            is_final_answer=result.is_final_answer and not result.error,
            error=result.error,
        )
