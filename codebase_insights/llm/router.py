"""LLM Router — tier escalation, retries and prompt cropping around a provider.

Per logical request:
  1. SelectTier: map the requested size onto the tiers the provider exposes
  2. Invoking:   run the current tier through with_retry (retry while overloaded)
  3. Outcome:
       COMPLETED            → accept, return content
       EXCEEDED             → step up a tier, or crop the prompt on the last tier
       OVERLOADED / timeout → step up a tier, or crop if usage was reported, or give up
  4. GiveUp: record failure, log the resource, return None

Cropping re-enters Invoking on the same tier; the tier index never moves
backwards. Hard provider errors are recorded as failures and re-raised.

Worst-case wall-clock time for one request is roughly
  tiers × (max_attempts × request_timeout + backoff) × (1 + max_crops_per_request)
since there is no overall deadline.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from codebase_insights.core.logging import CONTEXT_FIELDS
from codebase_insights.llm.control import with_retry
from codebase_insights.llm.errors import (
    BadConfigurationLlmError,
    BadResponseContentLlmError,
    RejectionResponseLlmError,
)
from codebase_insights.llm.prompt_cropper import crop_prompt
from codebase_insights.llm.stats import InvocationStatistics
from codebase_insights.llm.types import (
    CropPolicy,
    GeneratedContent,
    InvocationOutcome,
    LlmPurpose,
    ModelTier,
    OutcomeStatus,
    RequestedSize,
    RetryPolicy,
    TierCandidate,
    TokenUsage,
)

logger = logging.getLogger(__name__)

_REQUESTED_TIERS: dict[RequestedSize, tuple[ModelTier, ...]] = {
    RequestedSize.SMALL: (ModelTier.SMALL,),
    RequestedSize.LARGE: (ModelTier.LARGE,),
    RequestedSize.SMALL_THEN_LARGE: (ModelTier.SMALL, ModelTier.LARGE),
}


class _NextAction(str, Enum):
    STEP_UP = "step_up"
    CROP = "crop"
    GIVE_UP = "give_up"


def _is_embedding(content: Any) -> bool:
    return isinstance(content, list) and all(
        isinstance(item, (int, float)) and not isinstance(item, bool) for item in content
    )


def _is_completion(content: Any) -> bool:
    return isinstance(content, (str, dict, list))


class LlmRouter:
    """Applies retries, tier step-ups and prompt cropping to provider calls.

    The provider must offer ``tier_candidates()``, ``embeddings_candidate()``,
    ``model_names()``, ``family`` and ``close()`` (see BaseLlmProvider).

    Usage:
        router = LlmRouter(get_provider())
        summary = await router.execute_completion("src/main.py", prompt, RequestedSize.SMALL_THEN_LARGE)
        vector = await router.generate_embedding("src/main.py", summary)
    """

    def __init__(
        self,
        provider: Any,
        stats: InvocationStatistics | None = None,
        retry_policy: RetryPolicy | None = None,
        crop_policy: CropPolicy | None = None,
    ):
        self._provider = provider
        self._stats = stats or InvocationStatistics()
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._crop_policy = crop_policy or CropPolicy.from_settings()
        self._tier_candidates: dict[ModelTier, TierCandidate] = provider.tier_candidates()

        if not self._tier_candidates:
            raise BadConfigurationLlmError("At least one completion tier must be provided")

        logger.info("Router LLMs to be used: %s", self.describe_models())

    @property
    def stats(self) -> InvocationStatistics:
        return self._stats

    def describe_models(self) -> str:
        names = self._provider.model_names()
        completions = ", ".join(f"{tier.value}: {c.description}" for tier, c in self._tier_candidates.items())
        return f"{self._provider.family} (embeddings: {names.get('embeddings', 'n/a')}, completions: {completions})"

    async def close(self) -> None:
        await self._provider.close()

    def log_stats_summary(self, include_total: bool = False) -> None:
        """Log the accumulated invocation event counts as a small table."""
        logger.info("LLM invocation event types recorded:")
        for row in self._stats.status_table(include_total=include_total):
            logger.info("  %s %-8s %5d  %s", row.symbol, row.event, row.count, row.description)

    # -- public operations ----------------------------------------------------

    def select_tiers(self, requested_size: RequestedSize) -> list[TierCandidate]:
        """Escalation path for a requested size, limited to tiers the provider has."""
        selected = [self._tier_candidates[t] for t in _REQUESTED_TIERS[requested_size] if t in self._tier_candidates]
        if not selected:
            available = ", ".join(t.value for t in self._tier_candidates) or "none"
            raise BadConfigurationLlmError(
                f"No completion model available for requested size '{requested_size.value}' "
                f"(provider exposes: {available})"
            )
        return selected

    async def generate_embedding(
        self,
        resource_id: str,
        content: str,
        context: dict[str, Any] | None = None,
    ) -> list[float] | None:
        """Embed ``content``; None means the resource should be skipped."""
        ctx = {**(context or {}), "resource": resource_id, "purpose": LlmPurpose.EMBEDDINGS.value}
        return await self._invoke_with_retries_and_adaptation(
            resource_id,
            content,
            ctx,
            [self._provider.embeddings_candidate()],
            as_json=False,
            reserve_completion=False,
            validate=_is_embedding,
        )

    async def execute_completion(
        self,
        resource_id: str,
        prompt: str,
        requested_size: RequestedSize = RequestedSize.SMALL_THEN_LARGE,
        as_json: bool = False,
        context: dict[str, Any] | None = None,
    ) -> GeneratedContent | None:
        """Complete ``prompt``; returns text (or parsed JSON), None if it could not be done.

        Raises BadConfigurationLlmError at once if the provider has none of the
        requested tiers.
        """
        candidates = self.select_tiers(requested_size)
        ctx = {
            **(context or {}),
            "resource": resource_id,
            "purpose": LlmPurpose.COMPLETIONS.value,
            "model_tier": candidates[0].tier.value,
            "output_format": "json" if as_json else "text",
        }
        return await self._invoke_with_retries_and_adaptation(
            resource_id,
            prompt,
            ctx,
            candidates,
            as_json=as_json,
            reserve_completion=True,
            validate=_is_completion,
        )

    # -- state machine ----------------------------------------------------------

    async def _invoke_with_retries_and_adaptation(
        self,
        resource_id: str,
        prompt: str,
        context: dict[str, Any],
        candidates: list[TierCandidate],
        as_json: bool,
        reserve_completion: bool,
        validate: Callable[[Any], bool],
    ) -> Any:
        try:
            result = await self._iterate_over_candidates(
                resource_id, prompt, context, candidates, as_json, reserve_completion, validate
            )
        except Exception:
            logger.error(
                "Unable to process resource '%s' with an LLM due to a non-recoverable error",
                resource_id,
                exc_info=True,
                extra=_log_extra(context),
            )
            _log_context(context, logging.ERROR)
            self._stats.record_failure()
            raise

        if result is None:
            logger.warning(
                "Given up on trying to fulfill the prompt with an LLM for resource '%s'",
                resource_id,
                extra=_log_extra(context),
            )
            self._stats.record_failure()

        return result

    async def _iterate_over_candidates(
        self,
        resource_id: str,
        initial_prompt: str,
        context: dict[str, Any],
        candidates: list[TierCandidate],
        as_json: bool,
        reserve_completion: bool,
        validate: Callable[[Any], bool],
    ) -> Any:
        current_prompt = initial_prompt
        index = 0
        crops = 0

        # Index does not advance after a crop so the cropped prompt goes to the same tier
        while index < len(candidates):
            candidate = candidates[index]
            outcome = await self._execute_with_retries(candidate, current_prompt, as_json, context)

            if outcome is not None and outcome.status == OutcomeStatus.COMPLETED:
                if not validate(outcome.content):
                    error = BadResponseContentLlmError(
                        f"LLM response for {context.get('purpose')} has an unexpected type",
                        type(outcome.content).__name__,
                    )
                    logger.error("%s", error, extra=_log_extra(context))
                    _log_context(context, logging.ERROR)
                    return None
                self._stats.record_success()
                return outcome.content

            action = self._next_action(outcome, candidate, index, len(candidates), resource_id, context)

            if action == _NextAction.STEP_UP:
                index += 1
                next_tier = candidates[index].tier
                if next_tier is not None:
                    context["model_tier"] = next_tier.value
                self._stats.record_step_up()
                current_prompt = initial_prompt
                continue

            if action == _NextAction.GIVE_UP:
                return None

            if crops >= self._crop_policy.max_crops_per_request:
                _log_with_context(
                    f"Prompt for resource '{resource_id}' was already cropped {crops} times, terminating attempts",
                    context,
                )
                return None

            usage = self._usage_for_crop(outcome, candidate)
            safety_percent = (
                self._crop_policy.exceeded_safety_percent
                if outcome.status == OutcomeStatus.EXCEEDED
                else self._crop_policy.overloaded_safety_percent
            )
            cropped = crop_prompt(current_prompt, usage, safety_percent, self._crop_policy, reserve_completion)

            if cropped.strip() == "" or len(cropped) >= len(current_prompt):
                _log_with_context(
                    f"Prompt for resource '{resource_id}' cannot be cropped any further "
                    f"({len(current_prompt)} chars), terminating attempts",
                    context,
                )
                return None

            self._stats.record_crop()
            crops += 1
            logger.info(
                "Cropped prompt for resource '%s' from %d to %d chars (attempt %d)",
                resource_id,
                len(current_prompt),
                len(cropped),
                crops,
            )
            current_prompt = cropped

        return None

    def _next_action(
        self,
        outcome: InvocationOutcome | None,
        candidate: TierCandidate,
        index: int,
        total: int,
        resource_id: str,
        context: dict[str, Any],
    ) -> _NextAction:
        can_step_up = index + 1 < total

        if outcome is None or outcome.status == OutcomeStatus.OVERLOADED:
            _log_with_context(
                "LLM problem processing prompt with current model because it is overloaded or timing out, "
                "even after retries (or its reply could not be parsed)",
                context,
            )
            if can_step_up:
                return _NextAction.STEP_UP
            if outcome is not None and self._usage_for_crop(outcome, candidate) is not None:
                return _NextAction.CROP
            return _NextAction.GIVE_UP

        if outcome.status == OutcomeStatus.EXCEEDED:
            usage = outcome.token_usage or TokenUsage()
            _log_with_context(
                f"LLM prompt tokens used {usage.prompt_tokens} plus completion tokens used "
                f"{usage.completion_tokens} exceeded the model's token limit of {usage.total_token_limit}",
                context,
            )
            if can_step_up:
                return _NextAction.STEP_UP
            if self._usage_for_crop(outcome, candidate) is None:
                _log_with_context(
                    f"No usable token usage reported for resource '{resource_id}', so the prompt cannot be cropped",
                    context,
                )
                return _NextAction.GIVE_UP
            return _NextAction.CROP

        raise RejectionResponseLlmError(
            f"Unknown LLM response status for resource '{resource_id}': '{outcome.status}'",
            outcome,
        )

    @staticmethod
    def _usage_for_crop(outcome: InvocationOutcome, candidate: TierCandidate) -> TokenUsage | None:
        """Reported usage, with the tier's published limit filled in when missing."""
        usage = outcome.token_usage
        if usage is None:
            return None
        if not usage.total_token_limit or usage.total_token_limit < 0:
            usage = TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_token_limit=candidate.max_total_tokens,
            )
        return usage if usage.is_usable else None

    async def _execute_with_retries(
        self,
        candidate: TierCandidate,
        prompt: str,
        as_json: bool,
        context: dict[str, Any],
    ) -> InvocationOutcome | None:
        policy = self._retry_policy
        return await with_retry(
            lambda: candidate.func(prompt, as_json, context),
            lambda outcome: outcome.status == OutcomeStatus.OVERLOADED,
            self._stats.record_retry,
            max_attempts=policy.max_attempts,
            min_delay_ms=policy.min_retry_delay_ms,
            max_jitter_ms=policy.max_retry_jitter_ms,
            timeout_ms=policy.request_timeout_ms,
        )


def _log_extra(context: dict[str, Any]) -> dict[str, Any]:
    return {name: context[name] for name in CONTEXT_FIELDS if name in context}


def _log_with_context(msg: str, context: dict[str, Any], level: int = logging.WARNING) -> None:
    logger.log(level, msg, extra=_log_extra(context))
    _log_context(context, level)


def _log_context(context: dict[str, Any], level: int = logging.WARNING) -> None:
    for key, value in context.items():
        logger.log(level, "  * %s: %s", key, value)
