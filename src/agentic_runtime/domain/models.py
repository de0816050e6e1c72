"""Domain models: tool calls, model responses, memory records, run results. Pure data, no I/O."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

# Appended to the error message fed back to the model so it does not retry blindly.
ACTION_STEP_ERROR_GUIDANCE = (
    "Now let's retry: take care not to repeat previous errors!\n"
    "If you have retried several times, try a completely different approach."
)


@dataclass(frozen=True)
class TokenUsage:
    """Input/output token counts reported by the model for one call."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: Optional["TokenUsage"]) -> "TokenUsage":
        if other is None:
            return self
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True)
class Timing:
    """Wall-clock interval. ``end_time`` is None while the interval is still open."""
    start_time: float
    end_time: Optional[float] = None

    @classmethod
    def start_now(cls) -> "Timing":
        return cls(start_time=time.time())

    def stop(self) -> "Timing":
        # Clamp so end >= start even if the wall clock steps backwards.
        return replace(self, end_time=max(time.time(), self.start_time))

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time


@dataclass(frozen=True)
class ToolCallRequest:
    """A single tool call requested by the model in a response."""
    call_id: str        # Correlates the call with its ToolOutput and the tool message in history
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOutput:
    """Result of one dispatched tool call, folded into the step's observations."""
    call_id: str
    tool_name: str
    output: Any
    observation: str
    is_final_answer: bool = False


@dataclass(frozen=True)
class LLMResponse:
    """Response from the model after one ``generate`` call.

    Either the model returns tool calls (``tool_calls`` non-empty) or it returns
    text in ``content``, which may contain a fenced code block for code agents.
    """
    content: Optional[str]
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True)
class SandboxResult:
    """What the code sandbox reports back after executing one code action."""
    output: Any = None
    logs: str = ""
    error: Optional[str] = None
    is_final_answer: bool = False


# ---------------------------------------------------------------------------
# Memory records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SystemPromptRecord:
    system_prompt: str

    def to_messages(self, summary_mode: bool = False) -> List[Dict[str, Any]]:
        return [{"role": "system", "content": self.system_prompt}]


@dataclass(frozen=True)
class TaskRecord:
    task: str

    def to_messages(self, summary_mode: bool = False) -> List[Dict[str, Any]]:
        return [{"role": "user", "content": f"New task:\n{self.task}"}]


@dataclass(frozen=True)
class GuidanceRecord:
    """Corrective note injected by the run loop, e.g. when the agent repeats itself."""
    text: str
    step_number: int

    def to_messages(self, summary_mode: bool = False) -> List[Dict[str, Any]]:
        return [{"role": "user", "content": self.text}]


@dataclass(frozen=True)
class PlanningRecord:
    """A plan (re)generated by the planning collaborator before a step."""
    plan: str
    step_number: int
    timing: Optional[Timing] = None
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    def to_messages(self, summary_mode: bool = False) -> List[Dict[str, Any]]:
        return [{"role": "assistant", "content": f"Plan:\n{self.plan.strip()}"}]


@dataclass(frozen=True)
class ActionStep:
    """Immutable record of one model-call → interpret → act iteration."""
    step_number: int
    timing: Timing
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    model_output: Optional[LLMResponse] = None
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    tool_outputs: List[ToolOutput] = field(default_factory=list)
    code_action: Optional[str] = None
    observations: Optional[str] = None
    action_output: Any = None
    is_final_answer: bool = False
    error: Optional[str] = None

    def to_messages(self, summary_mode: bool = False) -> List[Dict[str, Any]]:
        """Render this step as chat messages (OpenAI format) for the next model call."""
        messages: List[Dict[str, Any]] = []
        if self.tool_calls:
            content = None if summary_mode or self.model_output is None else self.model_output.content
            messages.append(_make_assistant_tool_turn(content, self.tool_calls))
            by_id = {o.call_id: o for o in self.tool_outputs}
            for tc in self.tool_calls:
                out = by_id.get(tc.call_id)
                messages.append(_make_tool_result(tc.call_id, out.observation if out else ""))
        else:
            if not summary_mode and self.model_output is not None and self.model_output.content:
                messages.append({"role": "assistant", "content": self.model_output.content})
            if self.observations:
                messages.append({"role": "user", "content": f"Observation:\n{self.observations}"})
        if self.error:
            messages.append(
                {"role": "user", "content": f"Error:\n{self.error}\n{ACTION_STEP_ERROR_GUIDANCE}"}
            )
        return messages

    def masked(self, placeholder: str) -> "ActionStep":
        """Copy of this step with observation text replaced (used by the masking memory policy)."""
        return replace(
            self,
            observations=placeholder if self.observations else self.observations,
            tool_outputs=[replace(o, observation=placeholder) for o in self.tool_outputs],
        )


# ---------------------------------------------------------------------------
# Run result
# ---------------------------------------------------------------------------

class RunState(str, Enum):
    """Orchestrator state. The last three are terminal and appear on RunResult."""
    RUNNING = "running"
    SUSPENDED = "suspended"
    SUCCESS = "success"
    MAX_STEPS_REACHED = "max_steps_reached"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCESS, RunState.MAX_STEPS_REACHED, RunState.ERROR)


@dataclass(frozen=True)
class RunResult:
    """Terminal summary of one run, produced exactly once when the loop stops."""
    output: Any
    state: RunState
    token_usage: TokenUsage
    timing: Timing
    steps_taken: int
    steps: List[ActionStep] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state is RunState.SUCCESS


def _make_assistant_tool_turn(
    content: Optional[str],
    tool_calls: List[ToolCallRequest],
) -> Dict[str, Any]:
    """Build the ``assistant`` message dict for a turn that contains tool calls."""
    return {
        "role": "assistant",
        "content": content,
        "tool_calls": [
            {
                "id": tc.call_id,
                "type": "function",
                "function": {
                    "name": tc.tool_name,
                    "arguments": json.dumps(tc.arguments, ensure_ascii=False, default=str),
                },
            }
            for tc in tool_calls
        ],
    }


def _make_tool_result(call_id: str, content: str) -> Dict[str, Any]:
    """Build the ``tool`` message dict for a tool call result."""
    return {
        "role": "tool",
        "tool_call_id": call_id,
        "content": content,
    }
