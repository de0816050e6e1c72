"""Configuration: schema, loading from env/file, and shared constants."""

from .schema import (
    DEFAULT_CONFIG,
    MemoryPolicy,
    ModelConfig,
    PlanningConfig,
    RepetitionPolicy,
    RuntimeSettings,
    TelemetryConfig,
)
from .loader import load_config
from .constants import (
    DEFAULT_MAX_STEPS,
    DEFAULT_MAX_TOOL_CONCURRENCY,
    FINAL_ANSWER_TOOL_NAME,
    LLM_CHAT_DEFAULT_TIMEOUT_S,
    MAX_EVENT_CONTENT_CHARS,
    MAX_OBSERVATION_CHARS,
    SANDBOX_DEFAULT_TIMEOUT_S,
)

get_config = load_config  # alias

__all__ = [
    "DEFAULT_CONFIG", "MemoryPolicy", "ModelConfig", "PlanningConfig",
    "RepetitionPolicy", "RuntimeSettings", "TelemetryConfig",
    "load_config", "get_config",
    "DEFAULT_MAX_STEPS", "DEFAULT_MAX_TOOL_CONCURRENCY", "FINAL_ANSWER_TOOL_NAME",
    "LLM_CHAT_DEFAULT_TIMEOUT_S", "MAX_EVENT_CONTENT_CHARS", "MAX_OBSERVATION_CHARS",
    "SANDBOX_DEFAULT_TIMEOUT_S",
]
