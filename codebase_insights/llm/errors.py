"""Exceptions raised by the LLM invocation layer."""

from __future__ import annotations

from typing import Any


class LlmError(Exception):
    """Base class for problems using an LLM provider."""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload

    def __str__(self) -> str:
        message = super().__str__()
        if self.payload is None:
            return message
        return f"{message}. Payload: {self.payload!r}"


class BadConfigurationLlmError(LlmError):
    """The router or provider was configured in a way that can never succeed."""


class BadResponseContentLlmError(LlmError):
    """The content generated by the LLM has the wrong shape."""


class BadResponseMetadataLlmError(LlmError):
    """The metadata (e.g. token usage) returned with a response is missing or unusable."""


class RejectionResponseLlmError(LlmError):
    """The provider returned a status the router does not know how to handle."""


class ProviderRequestError(LlmError):
    """Hard, non-retryable failure reported by a provider (auth, malformed request...)."""

    def __init__(self, message: str, status_code: int = 0, payload: Any = None):
        super().__init__(message, payload)
        self.status_code = status_code
