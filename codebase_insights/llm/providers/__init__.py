"""Provider registry — builds the configured LLM provider."""

from __future__ import annotations

from typing import Any

from codebase_insights.llm.errors import BadConfigurationLlmError
from codebase_insights.llm.providers.base import BaseLlmProvider, ProviderReply
from codebase_insights.llm.providers.openai import OpenAiProvider
from codebase_insights.llm.types import LlmPurpose, ModelMetadata, ModelTier


def _build_openai(settings: Any) -> OpenAiProvider:
    completion_models: dict[ModelTier, ModelMetadata] = {}
    if settings.openai_small_model:
        completion_models[ModelTier.SMALL] = ModelMetadata(
            name=settings.openai_small_model,
            max_total_tokens=settings.openai_small_max_total_tokens,
            max_completion_tokens=settings.openai_small_max_completion_tokens,
        )
    if settings.openai_large_model:
        completion_models[ModelTier.LARGE] = ModelMetadata(
            name=settings.openai_large_model,
            max_total_tokens=settings.openai_large_max_total_tokens,
            max_completion_tokens=settings.openai_large_max_completion_tokens,
        )

    return OpenAiProvider(
        api_key=settings.openai_api_key,
        embeddings_model=ModelMetadata(
            name=settings.openai_embeddings_model,
            purpose=LlmPurpose.EMBEDDINGS,
            max_total_tokens=settings.openai_embeddings_max_tokens,
        ),
        completion_models=completion_models,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.llm_request_timeout_ms / 1000,
    )


PROVIDER_REGISTRY = {
    "openai": _build_openai,
}


def get_provider(name: str | None = None, settings: Any = None) -> BaseLlmProvider:
    """Factory: build the provider named in settings (or ``name``)."""
    if settings is None:
        from codebase_insights.core.config import settings
    name = name or settings.llm_provider
    builder = PROVIDER_REGISTRY.get(name)
    if builder is None:
        raise BadConfigurationLlmError(f"No LLM provider registered under name: {name}")
    return builder(settings)


__all__ = [
    "PROVIDER_REGISTRY",
    "BaseLlmProvider",
    "OpenAiProvider",
    "ProviderReply",
    "get_provider",
]
