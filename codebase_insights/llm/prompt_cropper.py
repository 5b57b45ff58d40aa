"""Prompt cropping — shrink a prompt to fit a model's context window.

Uses the token usage reported with a failed call to estimate how many
characters fit:

  chars_per_token  = len(prompt) / prompt_tokens
  chars_limit      = total_token_limit * chars_per_token
  completion_chars = max(reserved_min_completion - completion_tokens,
                         completion_tokens * min_completion_ratio) * chars_per_token
  available        = max(floor((100 - safety%) / 100 * (chars_limit - completion_chars)),
                         minimum_chars_floor)

The head of the prompt is kept and the tail dropped. The result is never
longer than the input.
"""

from __future__ import annotations

import math

from codebase_insights.llm.errors import BadResponseMetadataLlmError
from codebase_insights.llm.types import CropPolicy, TokenUsage


def available_prompt_chars(
    prompt_length: int,
    usage: TokenUsage,
    safety_percent: float,
    policy: CropPolicy,
    reserve_completion: bool = True,
) -> int:
    """How many prompt characters should fit, given the reported usage."""
    if not usage.is_usable:
        raise BadResponseMetadataLlmError("Token usage is not usable for cropping a prompt", usage)

    chars_per_token = prompt_length / usage.prompt_tokens
    chars_limit = usage.total_token_limit * chars_per_token

    completion_chars = 0.0
    if reserve_completion:
        completion_tokens = max(usage.completion_tokens, 0)
        completion_chars = (
            max(
                policy.reserved_min_completion_tokens - completion_tokens,
                completion_tokens * policy.min_completion_token_ratio,
            )
            * chars_per_token
        )

    available_no_buffer = chars_limit - completion_chars
    available = math.floor((100 - safety_percent) / 100 * available_no_buffer)
    return max(available, policy.minimum_chars_floor)


def crop_prompt(
    prompt: str,
    usage: TokenUsage,
    safety_percent: float,
    policy: CropPolicy,
    reserve_completion: bool = True,
) -> str:
    """Return the head of ``prompt`` that should fit the model's token budget."""
    if prompt.strip() == "":
        return prompt

    available = available_prompt_chars(len(prompt), usage, safety_percent, policy, reserve_completion)
    return prompt[:available]
