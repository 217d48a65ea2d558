# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from kanbot.core.health import BotHealth
from kanbot.core.state import AppState
from kanbot.tasks.task_store import TaskStore

from .fakes import FakeLLMClient


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="kanbot",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "board.sqlite3",
        matrix_store_path=tmp_path / "matrix_store",
        # Reminders
        reminder_interval_seconds=60.0,
        reminder_room_id="",
        store_timeout_seconds=5.0,
        public_url="https://board.example.com",
        timezone="UTC",
        heartbeat_interval_seconds=60.0,
        heartbeat_stale_seconds=120.0,
        # Connectors
        console_enabled=True,
        matrix_enabled=False,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep the real SQLite TaskStore here because its correctness is
    part of what we want to test.
    """
    return AppState(
        settings=settings,
        llm=FakeLLMClient(),
        task_store=store,
        health=BotHealth(stale_after_seconds=settings.heartbeat_stale_seconds),
    )
