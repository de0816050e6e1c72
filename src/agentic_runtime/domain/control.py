"""Control requests a step can raise mid-execution, and the caller's response.

Each request type declares a ``FallbackBehavior`` that decides how the request
resolves when nothing is attached to answer it (blocking and streaming runs).
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class FallbackBehavior(str, Enum):
    RAISE = "raise"
    USE_DEFAULT_VALUE = "use_default_value"
    AUTO_APPROVE = "auto_approve"
    SKIP_WITH_NIL = "skip_with_nil"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class UserInput:
    """Ask the caller for free-form input (optionally from a list of options)."""
    prompt: str
    options: Optional[List[str]] = None
    default_value: Any = None
    context: Dict[str, Any] = field(default_factory=dict)
    fallback: FallbackBehavior = FallbackBehavior.USE_DEFAULT_VALUE
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)

    request_type = "user_input"


@dataclass(frozen=True)
class Confirmation:
    """Ask the caller to approve an action with side effects.

    Unless given explicitly, the fallback is ``auto_approve`` for reversible
    actions and ``raise`` for irreversible ones.
    """
    action: str
    description: str
    consequences: List[str] = field(default_factory=list)
    reversible: bool = True
    fallback: Optional[FallbackBehavior] = None
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)

    request_type = "confirmation"

    def __post_init__(self) -> None:
        if self.fallback is None:
            behavior = FallbackBehavior.AUTO_APPROVE if self.reversible else FallbackBehavior.RAISE
            object.__setattr__(self, "fallback", behavior)

    @property
    def dangerous(self) -> bool:
        return not self.reversible


@dataclass(frozen=True)
class SubAgentQuery:
    """A managed sub-agent escalating a question to its parent."""
    agent_name: str
    query: str
    options: Optional[List[str]] = None
    context: Dict[str, Any] = field(default_factory=dict)
    fallback: FallbackBehavior = FallbackBehavior.SKIP_WITH_NIL
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)

    request_type = "sub_agent_query"


ControlRequest = Union[UserInput, Confirmation, SubAgentQuery]

CONTROL_REQUEST_TYPES = (UserInput, Confirmation, SubAgentQuery)


def is_control_request(item: Any) -> bool:
    return isinstance(item, CONTROL_REQUEST_TYPES)


def request_prompt(request: ControlRequest) -> str:
    """Human-readable text of a request, whichever type it is."""
    if isinstance(request, UserInput):
        return request.prompt
    if isinstance(request, Confirmation):
        return request.description
    return request.query


@dataclass(frozen=True)
class ControlResponse:
    """The caller's answer to a ControlRequest."""
    request_id: str
    approved: bool
    value: Any = None

    @classmethod
    def approve(cls, request_id: str, value: Any = None) -> "ControlResponse":
        return cls(request_id=request_id, approved=True, value=value)

    @classmethod
    def deny(cls, request_id: str, reason: Optional[str] = None) -> "ControlResponse":
        return cls(request_id=request_id, approved=False, value=reason)

    @classmethod
    def respond(cls, request_id: str, value: Any) -> "ControlResponse":
        return cls(request_id=request_id, approved=True, value=value)

    @property
    def denied(self) -> bool:
        return not self.approved
