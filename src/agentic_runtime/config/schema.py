"""Configuration schema. Defaults point at a local OpenAI-compatible server (Ollama)."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_MAX_STEPS,
    DEFAULT_MAX_TOOL_CONCURRENCY,
    FINAL_ANSWER_TOOL_NAME,
    LLM_CHAT_DEFAULT_TIMEOUT_S,
    SANDBOX_DEFAULT_TIMEOUT_S,
)


class ModelConfig(BaseModel):
    """LLM endpoint and model name (OpenAI chat-completions API)."""
    base_url: str = Field(..., description="e.g. http://localhost:11434/v1 or https://api.openai.com/v1")
    model: str = Field(..., description="Model name as the server knows it.")
    api_key: str = Field("", description="Bearer token; empty for local backends (no header sent).")
    backend: str = Field(
        "openai",
        description="Model adapter to build. Only 'openai' (any OpenAI-compatible server) ships today.",
    )
    temperature: float = 0.1
    top_p: float = 0.9
    max_tokens: int = 2048
    timeout_s: float = Field(
        default=LLM_CHAT_DEFAULT_TIMEOUT_S,
        description="HTTP timeout for one chat request. Hung calls are bounded here, not by the run loop.",
    )


class PlanningConfig(BaseModel):
    """Periodic planning. ``interval=None`` disables planning."""
    interval: Optional[int] = Field(
        None,
        ge=1,
        description="Plan before step 1 and again after every `interval` steps.",
    )
    templates: Dict[str, str] = Field(
        default_factory=dict,
        description=(
            "Overrides for planning prompt templates, keyed by "
            "'planning_system', 'initial_plan', 'update_plan'."
        ),
    )


class MemoryPolicy(BaseModel):
    """How memory is rendered into the next model call.

    ``full`` renders every record verbatim. ``mask`` replaces the observations
    of all but the most recent ``keep_recent`` action steps with
    ``placeholder`` to keep the context short on long runs.
    """
    strategy: str = Field("full", description="'full' or 'mask'.")
    keep_recent: int = Field(3, ge=0)
    placeholder: str = "[earlier observation omitted]"

    @field_validator("strategy")
    @classmethod
    def _known_strategy(cls, v: str) -> str:
        if v not in ("full", "mask"):
            raise ValueError(f"Unknown memory strategy {v!r}; expected 'full' or 'mask'.")
        return v


class RepetitionPolicy(BaseModel):
    """Loop detection over the most recent action steps of a run.

    When the last ``window_size`` steps repeat the same tool calls, the same
    code, or near-identical observations (trigram similarity at or above
    ``similarity_threshold``), a guidance note is added to memory before the
    next step.
    """
    enabled: bool = True
    window_size: int = Field(3, ge=2, description="Number of recent steps compared.")
    similarity_threshold: float = Field(0.9, ge=0.0, le=1.0)


class TelemetryConfig(BaseModel):
    """Optional OpenTelemetry tracing configuration."""
    enabled: bool = False
    service_name: str = "agentic-runtime"
    exporter: str = Field(
        "none",
        description="Span exporter: 'none' (default), 'console' (stdout), or 'otlp' (gRPC endpoint).",
    )
    otlp_endpoint: str = Field(
        "",
        description="OTLP gRPC endpoint, e.g. 'http://localhost:4317'. Required when exporter='otlp'.",
    )


class RuntimeSettings(BaseModel):
    """Root settings: model endpoint plus run-loop knobs."""
    model: ModelConfig
    max_steps: int = Field(DEFAULT_MAX_STEPS, gt=0, description="Step budget per run.")
    max_tool_concurrency: int = Field(
        DEFAULT_MAX_TOOL_CONCURRENCY,
        ge=1,
        description="Maximum tool calls from one model response executing concurrently.",
    )
    final_answer_tool: str = FINAL_ANSWER_TOOL_NAME
    raise_on_unknown_tool: bool = Field(
        False,
        description="Propagate UnknownToolError instead of turning it into an observation.",
    )
    custom_instructions: Optional[str] = None
    sandbox_timeout_s: int = Field(SANDBOX_DEFAULT_TIMEOUT_S, gt=0)
    planning: PlanningConfig = Field(default_factory=PlanningConfig)
    memory: MemoryPolicy = Field(default_factory=MemoryPolicy)
    repetition: RepetitionPolicy = Field(default_factory=RepetitionPolicy)
    telemetry: Optional[TelemetryConfig] = None


# Default: Ollama on localhost:11434
DEFAULT_CONFIG = RuntimeSettings(
    model=ModelConfig(
        base_url="http://localhost:11434/v1",
        model="qwen2.5:7b",
        temperature=0.1,
        max_tokens=2048,
    ),
)
