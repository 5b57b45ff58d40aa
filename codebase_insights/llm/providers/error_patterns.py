"""Recover token usage from provider "context too long" error messages.

Providers that reject an oversized prompt usually say by how much in free
text. These patterns pull the numbers out so the router can crop the prompt.
Captured groups, in order: token limit, prompt tokens, completion tokens.
Trailing groups may be absent.
"""

from __future__ import annotations

import math
import re

from codebase_insights.llm.types import ModelMetadata, TokenUsage

# Rough average used when a provider gives no prompt size at all
CHARS_PER_TOKEN_ESTIMATE = 2.8

ErrorPattern = re.Pattern

OPENAI_ERROR_PATTERNS: tuple[ErrorPattern, ...] = (
    # "This model's maximum context length is 8191 tokens, however you requested 10346 tokens
    #  (10346 in your prompt; 5 for the completion). Please reduce your prompt; or completion length."
    re.compile(r"max.*?(\d+) tokens.*?\(.*?(\d+).*?prompt.*?(\d+).*?completion"),
    # "This model's maximum context length is 8192 tokens. However, your messages resulted in
    #  8545 tokens. Please reduce the length of the messages."
    re.compile(r"max.*?(\d+) tokens.*?(\d+) "),
    # OpenAI-compatible servers sometimes only state the limit:
    # "This model's maximum context length is 4096 tokens. Please reduce the length of the prompt"
    re.compile(r"maximum context length is ?(\d+) tokens"),
)


def parse_token_usage_from_error(
    error_msg: str,
    patterns: tuple[ErrorPattern, ...] = (),
) -> TokenUsage:
    """Parse usage from the first matching pattern; -1 marks an unknown value."""
    for pattern in patterns:
        match = pattern.search(error_msg)
        if not match:
            continue

        groups = match.groups()
        return TokenUsage(
            total_token_limit=int(groups[0]),
            prompt_tokens=int(groups[1]) if len(groups) > 1 else -1,
            completion_tokens=int(groups[2]) if len(groups) > 2 else 0,
        )

    return TokenUsage(prompt_tokens=-1, completion_tokens=0, total_token_limit=-1)


def extract_token_usage_from_error(
    prompt: str,
    error_msg: str,
    metadata: ModelMetadata,
    patterns: tuple[ErrorPattern, ...] = (),
) -> TokenUsage:
    """Like parse_token_usage_from_error, but fills in any value it could not find."""
    usage = parse_token_usage_from_error(error_msg, patterns)
    published_limit = metadata.max_total_tokens
    limit = usage.total_token_limit if usage.total_token_limit and usage.total_token_limit > 0 else published_limit

    prompt_tokens = usage.prompt_tokens
    if prompt_tokens < 0:
        estimated = math.floor(len(prompt) / CHARS_PER_TOKEN_ESTIMATE)
        # The provider said it did not fit, so it must be over the limit
        prompt_tokens = max(estimated, limit + 1)

    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=max(usage.completion_tokens, 0),
        total_token_limit=limit,
    )


def default_missing_token_usage(usage: TokenUsage, metadata: ModelMetadata) -> TokenUsage:
    """Fill gaps in usage reported with an incomplete (truncated) response."""
    completion_tokens = max(usage.completion_tokens, 0)
    limit = usage.total_token_limit
    if not limit or limit < 0:
        limit = metadata.max_total_tokens
    prompt_tokens = usage.prompt_tokens
    if prompt_tokens < 0:
        prompt_tokens = max(1, limit - completion_tokens + 1)
    return TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, total_token_limit=limit)
