"""Loop detection: notice when recent steps keep doing the same thing.

Three patterns are checked, in order, over the last ``window_size`` steps:

* every step with tool calls made the same calls with the same arguments;
* every step with code ran the same code (whitespace-insensitive);
* every observation is near-identical to the first (trigram Jaccard similarity).

A hit carries a guidance text the run loop adds to memory before the next step.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from agentic_runtime.config import RepetitionPolicy
from agentic_runtime.domain import ActionStep

_WHITESPACE_RE = re.compile(r"\s+")

_GUIDANCE_PREFIX = "[Loop detection] "

_TOOL_CALL_GUIDANCE = """\
You've called '{tool}' {count} times with the same arguments.
This suggests you're stuck in a loop. Try one of:
1. Use a different approach or tool
2. Modify your arguments
3. Call final_answer with what you have so far"""

_CODE_GUIDANCE = """\
You've executed the same code {count} times in a row.
The approach isn't working. Try:
1. A different algorithm or method
2. Breaking the problem into smaller steps
3. Calling final_answer with partial progress"""

_OBSERVATION_GUIDANCE = """\
You've received the same result {count} times.
You may be stuck. Consider:
1. Using different inputs or parameters
2. Trying a different tool
3. Concluding with final_answer"""


@dataclass(frozen=True)
class RepetitionResult:
    pattern: str  # "tool_call", "code_action" or "observation"
    count: int
    guidance: str


def check_repetition(
    recent_steps: Sequence[ActionStep],
    policy: Optional[RepetitionPolicy] = None,
) -> Optional[RepetitionResult]:
    """Return the repetition found in the last ``policy.window_size`` steps, or None."""
    policy = policy or RepetitionPolicy()
    if not policy.enabled or len(recent_steps) < policy.window_size:
        return None
    window = list(recent_steps)[-policy.window_size:]
    return (
        _tool_call_repetition(window)
        or _code_repetition(window)
        or _observation_repetition(window, policy.similarity_threshold)
    )


def _tool_call_repetition(window: List[ActionStep]) -> Optional[RepetitionResult]:
    signatures = [
        tuple((tc.tool_name, _normalize_arguments(tc.arguments)) for tc in step.tool_calls)
        for step in window
        if step.tool_calls
    ]
    if len(signatures) < 2 or len(set(signatures)) != 1:
        return None
    tool = signatures[-1][0][0]
    return RepetitionResult(
        pattern="tool_call",
        count=len(signatures),
        guidance=_GUIDANCE_PREFIX + _TOOL_CALL_GUIDANCE.format(tool=tool, count=len(signatures)),
    )


def _code_repetition(window: List[ActionStep]) -> Optional[RepetitionResult]:
    codes = [_WHITESPACE_RE.sub(" ", s.code_action).strip() for s in window if s.code_action]
    if len(codes) < 2 or len(set(codes)) != 1:
        return None
    return RepetitionResult(
        pattern="code_action",
        count=len(codes),
        guidance=_GUIDANCE_PREFIX + _CODE_GUIDANCE.format(count=len(codes)),
    )


def _observation_repetition(window: List[ActionStep], threshold: float) -> Optional[RepetitionResult]:
    observations = [s.observations for s in window if s.observations]
    if len(observations) < 2:
        return None
    first = observations[0]
    if not all(similarity(first, obs) >= threshold for obs in observations):
        return None
    return RepetitionResult(
        pattern="observation",
        count=len(observations),
        guidance=_GUIDANCE_PREFIX + _OBSERVATION_GUIDANCE.format(count=len(observations)),
    )


def _normalize_arguments(arguments: Dict[str, Any]) -> Tuple[Tuple[str, str], ...]:
    return tuple(sorted((k, str(v).strip().lower()) for k, v in (arguments or {}).items()))


def _trigrams(text: str) -> FrozenSet[str]:
    return frozenset(text[i:i + 3] for i in range(len(text) - 2))


def similarity(a: str, b: str) -> float:
    """Jaccard index of the character trigrams of ``a`` and ``b`` (0.0 to 1.0)."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    ta, tb = _trigrams(a), _trigrams(b)
    union = ta | tb
    return len(ta & tb) / len(union) if union else 0.0
