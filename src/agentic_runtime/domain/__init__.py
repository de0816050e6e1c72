"""Domain layer: entities and value objects. No I/O."""

from .models import (
    ACTION_STEP_ERROR_GUIDANCE,
    ActionStep,
    GuidanceRecord,
    LLMResponse,
    PlanningRecord,
    RunResult,
    RunState,
    SandboxResult,
    SystemPromptRecord,
    TaskRecord,
    Timing,
    TokenUsage,
    ToolCallRequest,
    ToolOutput,
)
from .control import (
    Confirmation,
    ControlRequest,
    ControlResponse,
    FallbackBehavior,
    SubAgentQuery,
    UserInput,
    is_control_request,
)
from .errors import (
    AgentRuntimeError,
    ChannelMisuseError,
    ControlFlowError,
    StepStructureError,
    ToolExecutionError,
    UnknownToolError,
)

__all__ = [
    "ACTION_STEP_ERROR_GUIDANCE",
    "ActionStep",
    "GuidanceRecord",
    "LLMResponse",
    "PlanningRecord",
    "RunResult",
    "RunState",
    "SandboxResult",
    "SystemPromptRecord",
    "TaskRecord",
    "Timing",
    "TokenUsage",
    "ToolCallRequest",
    "ToolOutput",
    "Confirmation",
    "ControlRequest",
    "ControlResponse",
    "FallbackBehavior",
    "SubAgentQuery",
    "UserInput",
    "is_control_request",
    "AgentRuntimeError",
    "ChannelMisuseError",
    "ControlFlowError",
    "StepStructureError",
    "ToolExecutionError",
    "UnknownToolError",
]
