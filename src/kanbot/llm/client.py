# src/kanbot/llm/client.py

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import OpenAI

from .errors import LLMError, LLMMalformedOutputError, LLMRateLimitError, LLMUnavailableError

logger = logging.getLogger(__name__)

# Models that answered 404 are skipped for an hour.
BAD_MODEL_COOLDOWN_SECONDS = 3600.0


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    return exc.__class__.__name__ in {"RateLimitError", "TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {
        "APIConnectionError",
        "APITimeoutError",
        "Timeout",
        "ConnectTimeout",
        "ReadTimeout",
        "WriteTimeout",
    }


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def _make_timeout_obj(total_s: float) -> httpx.Timeout:
    connect_s = min(5.0, total_s)
    return httpx.Timeout(total_s, connect=connect_s)


class OpenRouterLLMClient:
    """
    OpenAI-compatible completion client (OpenRouter by default).

    Behavior:
    - Tries models in the order from settings (KANBOT_LLM_MODELS).
    - 404 (model not available) -> cool the model down, try next.
    - Rate limit / network issues -> try next.
    - Auth issues -> fail fast (no retries across models).
    - SDK retries are disabled; llm_timeout_seconds bounds the whole call,
      shared across the models it tries.
    """

    def __init__(self, settings: Any) -> None:
        api_key = getattr(settings, "llm_api_key", None)
        base_url = getattr(settings, "llm_base_url", "") or ""

        if not api_key or not str(api_key).strip():
            raise LLMUnavailableError("LLM API key is not set. Set KANBOT_LLM_API_KEY in your .env.")
        if not base_url.strip():
            raise LLMUnavailableError("LLM base URL is not set. Set KANBOT_LLM_BASE_URL in your .env.")

        self._models: List[str] = [m.strip() for m in (getattr(settings, "llm_models", []) or []) if m.strip()]
        if not self._models:
            raise LLMUnavailableError("LLM model list is empty. Set KANBOT_LLM_MODELS in your .env.")

        self._headers: Dict[str, str] = dict(getattr(settings, "extra_headers", {}) or {})
        self._timeout_s = float(getattr(settings, "llm_timeout_seconds", 10.0))
        self._timeout = _make_timeout_obj(self._timeout_s)
        self._clock = time.monotonic
        self._bad_models: dict[str, float] = {}  # model -> retry_at (monotonic)
        self._client = OpenAI(
            base_url=str(base_url),
            api_key=str(api_key),
            timeout=self._timeout,
            max_retries=0,
        )

    @property
    def models(self) -> list[str]:
        return list(self._models)

    def _create(self, *, model: str, system_prompt: str, user_prompt: str, timeout_s: float) -> Any:
        return self._client.chat.completions.create(
            model=model,
            extra_headers=self._headers or None,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=500,
            temperature=0,
            timeout=_make_timeout_obj(timeout_s),
        )

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        last_error: Optional[Exception] = None
        now = self._clock()
        deadline = now + self._timeout_s

        for model in self._models:
            retry_at = self._bad_models.get(model)
            if retry_at is not None and retry_at > now:
                continue

            t0 = self._clock()
            remaining = deadline - t0
            if remaining <= 0:
                logger.info("LLM: %.1fs budget spent, skipping model=%s", self._timeout_s, model)
                if last_error is None:
                    last_error = LLMUnavailableError("LLM request timed out.")
                break

            try:
                resp = self._create(
                    model=model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    timeout_s=remaining,
                )
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise LLMUnavailableError(
                        "LLM authentication failed. Check your API key (KANBOT_LLM_API_KEY)."
                    ) from e

                if _is_not_found_error(e):
                    self._bad_models[model] = self._clock() + BAD_MODEL_COOLDOWN_SECONDS
                    logger.info("LLM: model not available (404): %s", model)
                    continue

                if _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                    continue

                if _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                    continue

                logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            try:
                content = resp.choices[0].message.content
            except (AttributeError, IndexError, TypeError):
                content = None

            if not content or not str(content).strip():
                last_error = LLMMalformedOutputError(f"Model returned no content: {model}")
                continue

            logger.debug("LLM: completed with model=%s (%.2fs)", model, self._clock() - t0)
            return str(content)

        if last_error is not None:
            if isinstance(last_error, LLMError):
                raise last_error
            if _is_rate_limit_error(last_error):
                raise LLMRateLimitError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise LLMUnavailableError("LLM network/timeout error.") from last_error
            raise LLMUnavailableError("All LLM models failed.") from last_error

        raise LLMUnavailableError("All LLM models are cooling down.")
