"""Agent memory: the ordered record of a run, rendered into the next model call."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from agentic_runtime.config import MemoryPolicy
from agentic_runtime.domain import (
    ActionStep,
    GuidanceRecord,
    PlanningRecord,
    SystemPromptRecord,
    TaskRecord,
)

logger = logging.getLogger(__name__)

MemoryRecord = Union[SystemPromptRecord, TaskRecord, PlanningRecord, GuidanceRecord, ActionStep]


class AgentMemory:
    """Append-only list of records, owned by one orchestrator.

    ``reset`` is the only way records disappear; it keeps the system prompt.
    """

    def __init__(self, system_prompt: str, policy: Optional[MemoryPolicy] = None) -> None:
        self.system_prompt = SystemPromptRecord(system_prompt)
        self.policy = policy or MemoryPolicy()
        self.records: List[MemoryRecord] = []

    def reset(self) -> None:
        self.records = []

    def add_task(self, task: str) -> None:
        self.records.append(TaskRecord(task))

    def add(self, record: MemoryRecord) -> None:
        self.records.append(record)

    @property
    def action_steps(self) -> List[ActionStep]:
        return [r for r in self.records if isinstance(r, ActionStep)]

    @property
    def planning_steps(self) -> List[PlanningRecord]:
        return [r for r in self.records if isinstance(r, PlanningRecord)]

    def to_messages(self, summary_mode: bool = False) -> List[Dict[str, Any]]:
        """Render the system prompt plus every record, applying the memory policy."""
        records = self._apply_policy(self.records)
        messages = self.system_prompt.to_messages(summary_mode)
        for record in records:
            messages.extend(record.to_messages(summary_mode))
        return messages

    def _apply_policy(self, records: List[MemoryRecord]) -> List[MemoryRecord]:
        if self.policy.strategy == "full":
            return records
        steps = [r for r in records if isinstance(r, ActionStep)]
        keep = self.policy.keep_recent
        if len(steps) <= keep:
            return records
        to_mask = {id(s) for s in (steps[:-keep] if keep else steps)}
        logger.debug("Masking observations of %d older steps", len(to_mask))
        return [
            r.masked(self.policy.placeholder) if id(r) in to_mask else r
            for r in records
        ]
