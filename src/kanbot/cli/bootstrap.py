# src/kanbot/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (LLM/task store/health),
- builds the router and the reminder pipeline for connectors.
"""

from __future__ import annotations

import logging

from ..bot.interpreter import MessageInterpreter
from ..bot.router import BotRouter
from ..config import get_settings
from ..core.health import BotHealth
from ..core.ports import LLMClient, OutboundMessenger
from ..core.state import AppState
from ..llm.client import OpenRouterLLMClient
from ..llm.offline import OfflineLLMClient
from ..reminders.dispatcher import ReminderDispatcher, resolve_timezone
from ..reminders.scanner import ReminderScanner
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    if settings.matrix_enabled:
        settings.matrix_store_path.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    A missing/invalid LLM configuration is not fatal: the bot runs with the
    offline client and the rule-based task parser.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    llm_client: LLMClient
    try:
        llm_client = OpenRouterLLMClient(settings)
    except Exception as e:
        logger.warning("LLM client unavailable (%s); using rule-based task parsing.", e)
        llm_client = OfflineLLMClient(reason=str(e))

    return AppState(
        settings=settings,
        llm=llm_client,
        task_store=TaskStore(settings.tasks_db_path),
        health=BotHealth(stale_after_seconds=float(settings.heartbeat_stale_seconds)),
    )


def build_interpreter(state: AppState) -> MessageInterpreter:
    tz = resolve_timezone(getattr(state.settings, "timezone", ""))
    return MessageInterpreter(state.llm, tz=tz)


def build_router(state: AppState) -> BotRouter:
    tz = resolve_timezone(getattr(state.settings, "timezone", ""))
    return BotRouter(state.task_store, build_interpreter(state), tz=tz)


def build_reminder_pipeline(
        state: AppState,
        messenger: OutboundMessenger,
        *,
        target: str | None,
) -> tuple[ReminderScanner, ReminderDispatcher]:
    """Scanner + dispatcher sharing the store, posting through messenger to target."""
    settings = state.settings
    timeout_s = float(getattr(settings, "store_timeout_seconds", 10.0))

    scanner = ReminderScanner(state.task_store, timeout_seconds=timeout_s)
    dispatcher = ReminderDispatcher(
        state.task_store,
        messenger,
        target=target,
        public_url=str(getattr(settings, "public_url", "http://localhost:3000")),
        tz=resolve_timezone(getattr(settings, "timezone", "")),
        timeout_seconds=timeout_s,
    )
    return scanner, dispatcher
