"""Ports (abstract interfaces) used by the application layer.

Each port is a ``Protocol``: the run loop depends on the *shape* of a
collaborator, never on a concrete class. Adapters under ``infrastructure``
satisfy these shapes; the application layer never imports from there.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Dict, List, Optional, Protocol, Union

from agentic_runtime.domain import ActionStep, LLMResponse, PlanningRecord, SandboxResult

if TYPE_CHECKING:
    from agentic_runtime.application.control_channel import StepContext
    from agentic_runtime.application.events import RunEvent


class Model(Protocol):
    """A language model behind a single ``generate`` call.

    ``tools`` is a list of OpenAI-format function definitions. The model either
    answers with ``tool_calls`` or with text in ``content``. Retries, rate
    limiting and timeouts belong to the implementation; the run loop calls
    ``generate`` once per step and never retries.
    """

    async def generate(
        self,
        messages: List[Dict[str, Any]],
        *,
        stop_sequences: Optional[List[str]] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMResponse: ...


class Tool(Protocol):
    """A named, described capability the model can invoke.

    ``inputs`` maps argument name to a JSON-schema fragment; entries with
    ``"nullable": True`` are optional. ``call`` may be a plain function (run in
    a worker thread) or a coroutine function (awaited on the loop).
    """

    name: str
    description: str
    inputs: Dict[str, Dict[str, Any]]

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        """Raise ``ValueError``/``TypeError`` when ``arguments`` do not fit ``inputs``."""
        ...

    def call(
        self, arguments: Dict[str, Any], context: "StepContext"
    ) -> Union[Any, Awaitable[Any]]: ...


class Sandbox(Protocol):
    """Executes a code action and reports ``{output, logs, error, is_final_answer}``."""

    async def execute(self, code: str, language: str, timeout: int) -> SandboxResult: ...


class Planner(Protocol):
    """Produces or revises the plan before a step.

    ``steps`` are the action steps recorded so far in this run (empty before the
    first step); the last one carries the latest observations.
    """

    async def plan(
        self,
        task: str,
        steps: List[ActionStep],
        step_number: int,
    ) -> PlanningRecord: ...


class EventSink(Protocol):
    """Receives lifecycle events. Must not block; failures are logged and ignored."""

    def emit(self, event: "RunEvent") -> None: ...
