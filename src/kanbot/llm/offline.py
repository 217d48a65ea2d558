# src/kanbot/llm/offline.py

from __future__ import annotations

from .errors import LLMUnavailableError


class OfflineLLMClient:
    """
    Stand-in used when no external API is configured.

    Every call raises LLMUnavailableError, so callers take their
    deterministic fallback path (rule-based task parsing, canned summary).
    """

    def __init__(self, reason: str = "No external LLM is configured.") -> None:
        self.reason = reason

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        raise LLMUnavailableError(self.reason)
