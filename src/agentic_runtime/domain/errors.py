"""Domain and application errors."""

from __future__ import annotations

from typing import Any, Dict, Optional


class AgentRuntimeError(Exception):
    """Base for agent runtime errors."""
    pass


class ToolExecutionError(AgentRuntimeError):
    """Tool execution failed (validation, permission, or tool error)."""
    pass


class UnknownToolError(ToolExecutionError):
    """The model asked for a tool that is not in the registry."""

    def __init__(self, tool_name: str, available: Optional[list] = None) -> None:
        self.tool_name = tool_name
        self.available = list(available or [])
        hint = f" Available tools: {', '.join(self.available)}." if self.available else ""
        super().__init__(f"Unknown tool {tool_name!r}.{hint}")


class StepStructureError(AgentRuntimeError):
    """The model response contained no actionable content (no tool calls, no code)."""
    pass


class ControlFlowError(AgentRuntimeError):
    """A control request could not be answered and its fallback is ``raise``."""

    def __init__(
        self,
        message: str,
        request_type: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.request_type = request_type
        self.context = dict(context or {})


class ChannelMisuseError(AgentRuntimeError):
    """The control channel was used outside its protocol (no active step, no pending request)."""
    pass
