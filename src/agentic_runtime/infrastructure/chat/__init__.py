"""Model factory: build the right model adapter for a ModelConfig."""

from __future__ import annotations

from agentic_runtime.application.ports import Model
from agentic_runtime.config.schema import ModelConfig
from agentic_runtime.infrastructure.chat.openai_compat import OpenAICompatibleModel


def build_model(model_config: ModelConfig) -> Model:
    """Return the adapter for ``model_config.backend``.

    Raises:
        ValueError: For unknown backend values.
    """
    if model_config.backend == "openai":
        return OpenAICompatibleModel(
            base_url=model_config.base_url,
            model=model_config.model,
            api_key=model_config.api_key,
            temperature=model_config.temperature,
            top_p=model_config.top_p,
            max_tokens=model_config.max_tokens,
            timeout_s=model_config.timeout_s,
        )
    raise ValueError(
        f"Unknown model backend {model_config.backend!r}. "
        "Supported backends: 'openai' (any OpenAI-compatible server)."
    )


__all__ = ["OpenAICompatibleModel", "build_model"]
