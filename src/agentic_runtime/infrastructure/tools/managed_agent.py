"""Expose a whole orchestrator as a tool of another (a managed sub-agent)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from agentic_runtime.application.control_channel import StepContext
from agentic_runtime.application.orchestrator import RunOrchestrator
from agentic_runtime.domain import (
    ControlResponse,
    RunResult,
    ToolExecutionError,
    is_control_request,
)

logger = logging.getLogger(__name__)


class ManagedAgentTool:
    """Runs a sub-agent on a delegated task and returns its final output.

    The sub-run is driven suspendably: every control request it raises is
    passed up through the parent's StepContext, so whoever answers the parent
    answers the sub-agent too. A sub-run that does not succeed raises
    ToolExecutionError, which the dispatcher turns into an observation.
    Several delegations to the same agent in one response run one after
    another, because they share its memory.
    """

    inputs = {"task": {"type": "string", "description": "The task to delegate to this agent."}}

    def __init__(
        self,
        orchestrator: RunOrchestrator,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.name = name or orchestrator.config.agent_name
        self.description = description or f"Delegate a sub-task to the {self.name} agent."

    def validate_arguments(self, arguments: Dict[str, Any]) -> None:
        if not str(arguments.get("task") or "").strip():
            raise ValueError("task must be a non-empty string")

    async def call(self, arguments: Dict[str, Any], context: StepContext) -> Any:
        logger.info("Step %s: delegating to %s", context.step_number, self.name)
        run = self.orchestrator.run_suspendable(arguments["task"])
        result: Optional[RunResult] = None
        try:
            async for item in run:
                if is_control_request(item):
                    answer = await context.request(item)
                    await run.respond(
                        ControlResponse(request_id=item.id, approved=answer.approved, value=answer.value)
                    )
                elif isinstance(item, RunResult):
                    result = item
        finally:
            await run.aclose()

        if result is None or not result.success:
            state = result.state.value if result is not None else "unknown"
            detail = f": {result.error}" if result is not None and result.error else ""
            raise ToolExecutionError(f"agent {self.name!r} ended in state {state}{detail}")
        return result.output
