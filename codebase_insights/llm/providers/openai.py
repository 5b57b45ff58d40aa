"""OpenAI-compatible provider (chat completions + embeddings over httpx).

Works against api.openai.com and any server exposing the same endpoints
(Azure-style proxies, vLLM, Ollama's OpenAI shim...).

Vendor-specific behaviors:
  - 429 / 5xx / httpx timeouts → overloaded (retried by the router)
  - 400 with a "maximum context length" message → token limit exceeded
  - finish_reason "length" or empty content → incomplete (token limit exceeded)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from codebase_insights.llm.errors import ProviderRequestError
from codebase_insights.llm.providers.base import BaseLlmProvider, ProviderReply
from codebase_insights.llm.providers.error_patterns import OPENAI_ERROR_PATTERNS
from codebase_insights.llm.types import LlmPurpose, ModelMetadata, ModelTier, TokenUsage

logger = logging.getLogger(__name__)

_OVERLOAD_STATUS_CODES = {429, 500, 502, 503, 504}
_OVERLOAD_MARKERS = ("rate limit", "too many requests", "overloaded", "server busy")
_TOKEN_LIMIT_MARKERS = ("maximum context length", "context_length_exceeded", "token limit", "too long")


class OpenAiProvider(BaseLlmProvider):
    """OpenAI Chat Completions / Embeddings provider."""

    family = "openai"

    def __init__(
        self,
        api_key: str,
        embeddings_model: ModelMetadata,
        completion_models: dict[ModelTier, ModelMetadata],
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 420.0,
        temperature: float = 0.0,
    ):
        super().__init__(embeddings_model, completion_models, OPENAI_ERROR_PATTERNS)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature

    async def _invoke_model(self, purpose: LlmPurpose, metadata: ModelMetadata, prompt: str) -> ProviderReply:
        if purpose == LlmPurpose.EMBEDDINGS:
            data = await self._post("/embeddings", {"model": metadata.name, "input": prompt})
            embedding = data["data"][0]["embedding"]
            usage = data.get("usage", {})
            return ProviderReply(
                content=embedding,
                token_usage=TokenUsage(
                    prompt_tokens=usage.get("prompt_tokens", -1),
                    completion_tokens=0,
                    total_token_limit=metadata.max_total_tokens,
                ),
                is_incomplete=len(embedding) == 0,
            )

        payload: dict[str, Any] = {
            "model": metadata.name,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
        }
        if metadata.max_completion_tokens:
            payload["max_tokens"] = metadata.max_completion_tokens

        data = await self._post("/chat/completions", payload)
        choice = data["choices"][0]
        content = choice["message"].get("content") or ""
        usage = data.get("usage", {})

        return ProviderReply(
            content=content,
            token_usage=TokenUsage(
                prompt_tokens=usage.get("prompt_tokens", -1),
                completion_tokens=usage.get("completion_tokens", -1),
                total_token_limit=metadata.max_total_tokens,
            ),
            is_incomplete=choice.get("finish_reason") == "length" or not content,
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            resp = await client.post(
                f"{self.base_url}{path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )

        if resp.status_code >= 400:
            raise ProviderRequestError(
                f"OpenAI request to {path} failed with HTTP {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
            )
        return resp.json()

    def _is_overloaded(self, error: Exception) -> bool:
        if isinstance(error, httpx.TimeoutException):
            return True
        if isinstance(error, ProviderRequestError) and error.status_code in _OVERLOAD_STATUS_CODES:
            return True
        message = str(error).lower()
        return any(marker in message for marker in _OVERLOAD_MARKERS)

    def _is_token_limit_exceeded(self, error: Exception) -> bool:
        if not isinstance(error, ProviderRequestError):
            return False
        message = str(error).lower()
        return any(marker in message for marker in _TOKEN_LIMIT_MARKERS)


def _error_message(resp: httpx.Response) -> str:
    """Best-effort extraction of the vendor's error message."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message", body["error"]))
    return str(body)[:500]
