"""Core types and value objects for the LLM invocation layer."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ModelTier(str, Enum):
    """Capacity tiers a provider can expose for completions."""

    SMALL = "small"
    LARGE = "large"


class RequestedSize(str, Enum):
    """Capacity requested by a caller for one completion."""

    SMALL = "small"
    LARGE = "large"
    SMALL_THEN_LARGE = "small_then_large"


class LlmPurpose(str, Enum):
    """What a model invocation is used for."""

    EMBEDDINGS = "embeddings"
    COMPLETIONS = "completions"


class OutcomeStatus(str, Enum):
    """Normalized status of a single provider call."""

    COMPLETED = "completed"
    OVERLOADED = "overloaded"  # Rate limited, busy, or unusable reply worth retrying
    EXCEEDED = "exceeded"  # Prompt + completion did not fit the model's token budget


class StatEvent(str, Enum):
    """Invocation events counted by InvocationStatistics."""

    SUCCESS = "success"
    FAILURE = "failure"
    STEP_UP = "step_up"
    RETRY = "retry"
    CROP = "crop"

    @property
    def description(self) -> str:
        return _STAT_EVENT_INFO[self][0]

    @property
    def symbol(self) -> str:
        return _STAT_EVENT_INFO[self][1]


_STAT_EVENT_INFO: dict[StatEvent, tuple[str, str]] = {
    StatEvent.SUCCESS: ("LLM invocation succeeded", ">"),
    StatEvent.FAILURE: ("LLM invocation failed so no data produced", "!"),
    StatEvent.STEP_UP: ("Stepped up to a larger model tier to process the request", "+"),
    StatEvent.RETRY: ("Retried calling LLM due to overload or timeout", "?"),
    StatEvent.CROP: ("Cropped prompt due to excessive size, before resending", "-"),
}


# ---------------------------------------------------------------------------
# Outcome of one provider call
# ---------------------------------------------------------------------------

GeneratedContent = Union[str, dict[str, Any], list[Any], list[float]]


@dataclass
class TokenUsage:
    """Token accounting reported (or inferred) for one provider call."""

    prompt_tokens: int = -1
    completion_tokens: int = 0
    total_token_limit: int | None = None

    @property
    def is_usable(self) -> bool:
        """True if the numbers are good enough to drive prompt cropping."""
        return self.prompt_tokens > 0 and bool(self.total_token_limit) and self.total_token_limit > 0


@dataclass
class InvocationOutcome:
    """Normalized result of one provider call — exactly one status per call."""

    status: OutcomeStatus
    content: GeneratedContent | None = None
    token_usage: TokenUsage | None = None
    model: str = ""

    @classmethod
    def completed(
        cls, content: GeneratedContent, token_usage: TokenUsage | None = None, model: str = ""
    ) -> InvocationOutcome:
        return cls(OutcomeStatus.COMPLETED, content=content, token_usage=token_usage, model=model)

    @classmethod
    def overloaded(cls, token_usage: TokenUsage | None = None, model: str = "") -> InvocationOutcome:
        return cls(OutcomeStatus.OVERLOADED, token_usage=token_usage, model=model)

    @classmethod
    def exceeded(cls, token_usage: TokenUsage | None, model: str = "") -> InvocationOutcome:
        return cls(OutcomeStatus.EXCEEDED, token_usage=token_usage, model=model)

    @property
    def has_usable_usage(self) -> bool:
        return self.token_usage is not None and self.token_usage.is_usable


# (prompt, as_json, context) -> outcome
ModelTierFunction = Callable[[str, bool, dict[str, Any]], Awaitable[InvocationOutcome]]


@dataclass
class TierCandidate:
    """One step on a request's escalation path."""

    tier: ModelTier | None  # None for the embeddings model
    func: ModelTierFunction
    description: str = ""
    max_total_tokens: int | None = None


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """Per-tier retry settings. Immutable, built once at startup."""

    max_attempts: int = 3
    min_retry_delay_ms: int = 20_000
    max_retry_jitter_ms: int = 30_000
    request_timeout_ms: int = 7 * 60 * 1000

    @classmethod
    def from_settings(cls, settings: Any = None) -> RetryPolicy:
        if settings is None:
            from codebase_insights.core.config import settings
        return cls(
            max_attempts=settings.llm_max_attempts,
            min_retry_delay_ms=settings.llm_min_retry_delay_ms,
            max_retry_jitter_ms=settings.llm_max_retry_jitter_ms,
            request_timeout_ms=settings.llm_request_timeout_ms,
        )


@dataclass(frozen=True)
class CropPolicy:
    """Constants for shrinking prompts that overflow a model's context window."""

    exceeded_safety_percent: float = 15.0  # Tighter margin on a confirmed overflow
    overloaded_safety_percent: float = 5.0  # Best guess when usage came with an overload
    reserved_min_completion_tokens: int = 256
    min_completion_token_ratio: float = 0.25
    minimum_chars_floor: int = 200
    max_crops_per_request: int = 10

    @classmethod
    def from_settings(cls, settings: Any = None) -> CropPolicy:
        if settings is None:
            from codebase_insights.core.config import settings
        return cls(
            exceeded_safety_percent=settings.llm_crop_exceeded_safety_percent,
            overloaded_safety_percent=settings.llm_crop_overloaded_safety_percent,
            reserved_min_completion_tokens=settings.llm_crop_reserved_min_completion_tokens,
            min_completion_token_ratio=settings.llm_crop_min_completion_token_ratio,
            minimum_chars_floor=settings.llm_crop_min_chars,
            max_crops_per_request=settings.llm_crop_max_per_request,
        )


# ---------------------------------------------------------------------------
# Model metadata
# ---------------------------------------------------------------------------


@dataclass
class ModelMetadata:
    """Static facts about one provider model."""

    name: str  # Provider model identifier, e.g. "gpt-4o"
    purpose: LlmPurpose = LlmPurpose.COMPLETIONS
    max_total_tokens: int = 8192
    max_completion_tokens: int | None = None
