# tests/test_llm_client.py

from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from kanbot.llm.client import OpenRouterLLMClient
from kanbot.llm.errors import LLMMalformedOutputError, LLMRateLimitError, LLMUnavailableError
from kanbot.llm.offline import OfflineLLMClient


class TooManyRequestsError(Exception):
    pass


def _settings(**overrides) -> SimpleNamespace:
    base = dict(
        llm_api_key="sk-test",
        llm_base_url="https://openrouter.ai/api/v1",
        llm_models=["primary/model", "backup/model"],
        llm_timeout_seconds=5.0,
        extra_headers={},
    )
    base.update(overrides)
    return SimpleNamespace(**base)


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_missing_configuration_is_unavailable() -> None:
    with pytest.raises(LLMUnavailableError):
        OpenRouterLLMClient(_settings(llm_api_key=""))
    with pytest.raises(LLMUnavailableError):
        OpenRouterLLMClient(_settings(llm_models=[" "]))


def test_falls_through_models_in_order(monkeypatch) -> None:
    client = OpenRouterLLMClient(_settings())
    tried: list[str] = []

    def fake_create(*, model, system_prompt, user_prompt, timeout_s):
        tried.append(model)
        if model == "primary/model":
            raise TooManyRequestsError("429")
        return _response('{"title": "ok"}')

    monkeypatch.setattr(client, "_create", fake_create)

    assert client.complete("sys", "user") == '{"title": "ok"}'
    assert tried == ["primary/model", "backup/model"]


def test_all_models_rate_limited(monkeypatch) -> None:
    client = OpenRouterLLMClient(_settings())

    def fake_create(**kwargs):
        raise TooManyRequestsError("429")

    monkeypatch.setattr(client, "_create", fake_create)

    with pytest.raises(LLMRateLimitError):
        client.complete("sys", "user")


def test_timeout_budget_is_shared_across_models(monkeypatch) -> None:
    client = OpenRouterLLMClient(_settings(llm_models=["a/model", "b/model", "c/model"], llm_timeout_seconds=10.0))
    clock = [100.0]
    budgets: list[tuple[str, float]] = []

    def fake_create(*, model, system_prompt, user_prompt, timeout_s):
        budgets.append((model, timeout_s))
        clock[0] += 6.0
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(client, "_clock", lambda: clock[0])
    monkeypatch.setattr(client, "_create", fake_create)

    with pytest.raises(LLMUnavailableError, match="timeout"):
        client.complete("sys", "user")
    assert budgets == [("a/model", 10.0), ("b/model", 4.0)]
    assert clock[0] - 100.0 == 12.0


def test_empty_content_is_malformed(monkeypatch) -> None:
    client = OpenRouterLLMClient(_settings(llm_models=["only/model"]))
    monkeypatch.setattr(client, "_create", lambda **kwargs: _response("   "))

    with pytest.raises(LLMMalformedOutputError):
        client.complete("sys", "user")


def test_offline_client_always_unavailable() -> None:
    with pytest.raises(LLMUnavailableError, match="no key"):
        OfflineLLMClient("no key").complete("sys", "user")
