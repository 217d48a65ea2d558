# src/kanbot/llm/errors.py

from __future__ import annotations


class LLMError(RuntimeError):
    """Base class for completion failures."""


class LLMUnavailableError(LLMError):
    """No client configured, auth failure, network error or timeout."""


class LLMRateLimitError(LLMError):
    pass


class LLMMalformedOutputError(LLMError):
    """The model answered, but not with the structured output we asked for."""
