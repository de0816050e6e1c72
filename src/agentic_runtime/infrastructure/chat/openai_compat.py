"""OpenAI-compatible model adapter.

Talks to any server exposing ``POST {base_url}/chat/completions``: OpenAI,
Ollama's ``/v1`` endpoint, vLLM, LM Studio, LiteLLM. One request per
``generate`` call; non-2xx responses raise ``httpx.HTTPStatusError`` and are
not retried here.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from agentic_runtime.config.constants import LLM_CHAT_DEFAULT_TIMEOUT_S
from agentic_runtime.domain import LLMResponse
from agentic_runtime.infrastructure.chat._parser import parse_chat_response

logger = logging.getLogger(__name__)


class OpenAICompatibleModel:
    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        api_key: str = "",
        temperature: float = 0.1,
        top_p: float = 0.9,
        max_tokens: int = 2048,
        timeout_s: float = LLM_CHAT_DEFAULT_TIMEOUT_S,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.model = model
        self._api_key = api_key
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens
        self._timeout = timeout_s
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def generate(
        self,
        messages: List[Dict[str, Any]],
        *,
        stop_sequences: Optional[List[str]] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMResponse:
        url = f"{self._base_url}/chat/completions"
        headers: Dict[str, str] = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
        }
        if tools:
            payload["tools"] = tools
        if stop_sequences:
            payload["stop"] = stop_sequences

        logger.debug(
            "POST %s model=%s messages=%d tools=%d",
            url, self.model, len(messages), len(tools or []),
        )
        r = await self._get_client().post(url, headers=headers, json=payload)
        r.raise_for_status()
        return parse_chat_response(r.json())

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
