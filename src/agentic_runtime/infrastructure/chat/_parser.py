"""Parse OpenAI chat-completions responses into LLMResponse."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from agentic_runtime.domain import LLMResponse, TokenUsage, ToolCallRequest


def parse_usage(data: Dict[str, Any]) -> TokenUsage:
    """Token counts from the ``usage`` block; zeros when the server omits it."""
    usage = data.get("usage") or {}
    return TokenUsage(
        input_tokens=int(usage.get("prompt_tokens") or 0),
        output_tokens=int(usage.get("completion_tokens") or 0),
    )


def parse_chat_response(data: Dict[str, Any]) -> LLMResponse:
    choices = data.get("choices") or []
    if not choices:
        raise ValueError("Chat response has no choices")
    message = choices[0].get("message") or {}
    content: Optional[str] = message.get("content")

    tool_calls: List[ToolCallRequest] = []
    for i, tc in enumerate(message.get("tool_calls") or []):
        fn = tc.get("function") or {}
        raw_args = fn.get("arguments") or "{}"
        if isinstance(raw_args, dict):
            # Some servers (older Ollama) send arguments as an object, not a JSON string.
            arguments: Dict[str, Any] = raw_args
        else:
            try:
                arguments = json.loads(raw_args)
            except json.JSONDecodeError:
                arguments = {"_raw": raw_args}
            if not isinstance(arguments, dict):
                arguments = {"_raw": raw_args}
        tool_calls.append(
            ToolCallRequest(
                call_id=tc.get("id") or f"call_{i}",
                tool_name=fn.get("name") or "",
                arguments=arguments,
            )
        )

    return LLMResponse(content=content, tool_calls=tool_calls, token_usage=parse_usage(data))
