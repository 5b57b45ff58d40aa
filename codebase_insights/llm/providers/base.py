"""Base provider — normalizes vendor calls into InvocationOutcomes.

A concrete provider only has to:
  - send one request for a model (_invoke_model)
  - say whether an error means "overloaded" or "prompt too long"

Everything else (JSON post-processing, token usage recovery from error text,
exposing capacity tiers to the router) lives here.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from codebase_insights.llm.errors import BadConfigurationLlmError, BadResponseContentLlmError
from codebase_insights.llm.json_tools import convert_text_to_json
from codebase_insights.llm.providers.error_patterns import (
    ErrorPattern,
    default_missing_token_usage,
    extract_token_usage_from_error,
)
from codebase_insights.llm.types import (
    GeneratedContent,
    InvocationOutcome,
    LlmPurpose,
    ModelMetadata,
    ModelTier,
    TierCandidate,
    TokenUsage,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderReply:
    """What a vendor call produced, before normalization."""

    content: GeneratedContent
    token_usage: TokenUsage
    is_incomplete: bool = False  # Completion cut short by the token limit


class BaseLlmProvider(ABC):
    """Base class for all LLM providers."""

    family: str = "base"

    def __init__(
        self,
        embeddings_model: ModelMetadata,
        completion_models: dict[ModelTier, ModelMetadata],
        error_patterns: tuple[ErrorPattern, ...] = (),
    ):
        if not completion_models:
            raise BadConfigurationLlmError(f"{type(self).__name__} needs at least one completion model")
        self.embeddings_model = embeddings_model
        self.completion_models = completion_models
        self.error_patterns = error_patterns

    # -- descriptor -----------------------------------------------------------

    def available_tiers(self) -> list[ModelTier]:
        """Capacity tiers this provider exposes, smallest first."""
        return [tier for tier in ModelTier if tier in self.completion_models]

    def tier_candidates(self) -> dict[ModelTier, TierCandidate]:
        """One bound completion function per available tier."""
        candidates: dict[ModelTier, TierCandidate] = {}
        for tier in self.available_tiers():
            metadata = self.completion_models[tier]

            async def _invoke(prompt: str, as_json: bool, context: dict[str, Any], _tier=tier) -> InvocationOutcome:
                return await self.invoke_completion(_tier, prompt, as_json, context)

            candidates[tier] = TierCandidate(
                tier=tier,
                func=_invoke,
                description=metadata.name,
                max_total_tokens=metadata.max_total_tokens,
            )
        return candidates

    def embeddings_candidate(self) -> TierCandidate:
        async def _invoke(prompt: str, as_json: bool, context: dict[str, Any]) -> InvocationOutcome:
            return await self.invoke_embeddings(prompt, context)

        return TierCandidate(
            tier=None,
            func=_invoke,
            description=self.embeddings_model.name,
            max_total_tokens=self.embeddings_model.max_total_tokens,
        )

    def model_names(self) -> dict[str, str]:
        names = {"embeddings": self.embeddings_model.name}
        for tier in ModelTier:
            names[tier.value] = self.completion_models[tier].name if tier in self.completion_models else "n/a"
        return names

    def get_model_metadata(self, tier: ModelTier | None = None) -> ModelMetadata:
        """Metadata for a completion tier, or for the embeddings model when ``tier`` is None."""
        if tier is None:
            return self.embeddings_model
        metadata = self.completion_models.get(tier)
        if metadata is None:
            raise BadConfigurationLlmError(f"'{tier.value}' completion model for {type(self).__name__} was not defined")
        return metadata

    async def close(self) -> None:
        """Release client resources. No-op unless the provider keeps a client open."""

    # -- invocation -----------------------------------------------------------

    async def invoke_embeddings(self, content: str, context: dict[str, Any] | None = None) -> InvocationOutcome:
        return await self._execute(self.embeddings_model, LlmPurpose.EMBEDDINGS, content, False, context)

    async def invoke_completion(
        self,
        tier: ModelTier,
        prompt: str,
        as_json: bool = False,
        context: dict[str, Any] | None = None,
    ) -> InvocationOutcome:
        metadata = self.get_model_metadata(tier)
        return await self._execute(metadata, LlmPurpose.COMPLETIONS, prompt, as_json, context)

    async def _execute(
        self,
        metadata: ModelMetadata,
        purpose: LlmPurpose,
        prompt: str,
        as_json: bool,
        context: dict[str, Any] | None,
    ) -> InvocationOutcome:
        # The caller's dict is written to, even when empty
        if context is None:
            context = {}
        try:
            reply = await self._invoke_model(purpose, metadata, prompt)
        except Exception as e:
            if self._is_overloaded(e):
                return InvocationOutcome.overloaded(model=metadata.name)
            if self._is_token_limit_exceeded(e):
                usage = extract_token_usage_from_error(prompt, str(e), metadata, self.error_patterns)
                return InvocationOutcome.exceeded(usage, model=metadata.name)
            raise

        if reply.is_incomplete:
            usage = default_missing_token_usage(reply.token_usage, metadata)
            return InvocationOutcome.exceeded(usage, model=metadata.name)

        if purpose == LlmPurpose.EMBEDDINGS:
            return InvocationOutcome.completed(reply.content, reply.token_usage, model=metadata.name)

        return self._post_process_completion(reply, metadata, as_json, context)

    def _post_process_completion(
        self,
        reply: ProviderReply,
        metadata: ModelMetadata,
        as_json: bool,
        context: dict[str, Any],
    ) -> InvocationOutcome:
        """Convert to JSON if asked; an unparseable reply is reported as overloaded to force a retry."""
        try:
            if not isinstance(reply.content, str):
                raise BadResponseContentLlmError("Generated content is not a string", reply.content)
            content = convert_text_to_json(reply.content) if as_json else reply.content
        except BadResponseContentLlmError as e:
            logger.warning(
                "LLM response cannot be parsed (model '%s'), marking as overloaded to try again",
                metadata.name,
            )
            context["json_parse_error"] = str(e)
            return InvocationOutcome.overloaded(model=metadata.name)

        return InvocationOutcome.completed(content, reply.token_usage, model=metadata.name)

    # -- vendor specifics -----------------------------------------------------

    @abstractmethod
    async def _invoke_model(self, purpose: LlmPurpose, metadata: ModelMetadata, prompt: str) -> ProviderReply:
        """Send one request to the vendor for the given model."""
        ...

    @abstractmethod
    def _is_overloaded(self, error: Exception) -> bool:
        """Does the error mean the vendor is rate limiting, busy or timing out?"""
        ...

    @abstractmethod
    def _is_token_limit_exceeded(self, error: Exception) -> bool:
        """Does the error mean the prompt does not fit the model's context window?"""
        ...
