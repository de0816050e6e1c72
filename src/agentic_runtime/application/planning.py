"""Model-backed planning collaborator.

Before the first step the planner asks the model for an initial plan; at each
later planning point it shows the model a short progress summary and the
latest observations and asks for a revised plan. The current plan is kept so
updates can refer to it.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from agentic_runtime.application.ports import Model, Tool
from agentic_runtime.application.prompts import PLANNING_TEMPLATES, describe_tools
from agentic_runtime.domain import ActionStep, PlanningRecord, Timing

logger = logging.getLogger(__name__)

_STEP_SUMMARY_CHARS = 100


class ModelPlanner:
    def __init__(
        self,
        model: Model,
        tools: Mapping[str, Tool],
        templates: Optional[Dict[str, str]] = None,
    ) -> None:
        self.model = model
        self.tools = tools
        self.templates = {**PLANNING_TEMPLATES, **(templates or {})}
        self.current_plan: Optional[str] = None

    async def plan(
        self,
        task: str,
        steps: List[ActionStep],
        step_number: int,
    ) -> PlanningRecord:
        timing = Timing.start_now()
        if self.current_plan is None or not steps:
            prompt = self.templates["initial_plan"].format(
                task=task, tools=describe_tools(self.tools)
            )
        else:
            prompt = self.templates["update_plan"].format(
                task=task,
                steps=_summarize(steps),
                observations=steps[-1].observations or "No observations yet.",
                plan=self.current_plan,
            )
        messages = [
            {"role": "system", "content": self.templates["planning_system"]},
            {"role": "user", "content": prompt},
        ]
        response = await self.model.generate(messages)
        self.current_plan = (response.content or "").strip()
        logger.debug("Plan for step %d: %d chars", step_number, len(self.current_plan))
        return PlanningRecord(
            plan=self.current_plan,
            step_number=step_number,
            timing=timing.stop(),
            token_usage=response.token_usage,
        )


def _summarize(steps: List[ActionStep]) -> str:
    lines = [
        f"Step {s.step_number}: {(s.observations or s.error or '')[:_STEP_SUMMARY_CHARS]}..."
        for s in steps
    ]
    return "\n".join(lines) if lines else "None yet."
