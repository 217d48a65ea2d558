# tests/test_health.py

from __future__ import annotations

from dataclasses import fields

from kanbot.core.health import BotHealth, HealthState
from kanbot.core.state import AppState

from .fakes import FakeLLMClient


def test_starts_disconnected() -> None:
    snap = BotHealth().snapshot(now_ts=1000.0)
    assert snap.state == HealthState.STARTING
    assert snap.connected is False
    assert snap.last_heartbeat is None


def test_heartbeat_connects_and_goes_stale() -> None:
    health = BotHealth(stale_after_seconds=120)
    health.heartbeat(now_ts=1000.0)

    fresh = health.snapshot(now_ts=1100.0)
    assert fresh.state == HealthState.CONNECTED
    assert fresh.connected is True
    assert fresh.last_heartbeat == 1000.0

    stale = health.snapshot(now_ts=1121.0)
    assert stale.state == HealthState.DEGRADED
    assert stale.connected is False
    assert stale.error == "Bot has not responded in over 2 minutes"


def test_degraded_recovers_on_next_heartbeat() -> None:
    health = BotHealth()
    health.heartbeat(now_ts=1000.0)
    health.mark_degraded("Matrix sync failed: ReadTimeout")

    snap = health.snapshot(now_ts=1001.0)
    assert snap.state == HealthState.DEGRADED
    assert snap.error == "Matrix sync failed: ReadTimeout"

    health.heartbeat(now_ts=1002.0)
    snap = health.snapshot(now_ts=1003.0)
    assert snap.state == HealthState.CONNECTED
    assert snap.error is None


def test_stopped_is_terminal() -> None:
    health = BotHealth()
    health.heartbeat(now_ts=1000.0)
    health.mark_stopped("shutdown")
    health.heartbeat(now_ts=1001.0)
    health.mark_degraded("late error")

    snap = health.snapshot(now_ts=1002.0)
    assert snap.state == HealthState.STOPPED
    assert snap.connected is False
    assert snap.error == "shutdown"


def test_app_state_gets_a_fresh_health_per_instance(settings, store) -> None:
    a = AppState(settings=settings, llm=FakeLLMClient(), task_store=store)
    b = AppState(settings=settings, llm=FakeLLMClient(), task_store=store)
    a.health.heartbeat(now_ts=1000.0)

    assert a.health is not b.health
    assert b.health.snapshot(now_ts=1000.0).state == HealthState.STARTING
    assert [f.name for f in fields(AppState)] == ["settings", "llm", "task_store", "health"]
