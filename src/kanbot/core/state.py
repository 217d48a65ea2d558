# src/kanbot/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .health import BotHealth
from .ports import LLMClient, TaskRepo


@dataclass(slots=True)
class AppState:
    """Everything connectors need, wired once by cli.bootstrap."""

    settings: Any
    llm: LLMClient
    task_store: TaskRepo
    health: BotHealth = field(default_factory=BotHealth)
