# src/kanbot/connectors/console_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from datetime import datetime

from ..bot.router import BotRouter
from ..cli.bootstrap import build_reminder_pipeline
from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..reminders.dispatcher import ReminderNotice
from ..reminders.scheduler import run_reminder_scheduler

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleMessenger:
    """OutboundMessenger that prints to stdout (local runs without Matrix)."""

    async def post_message(self, *, target: str | None, notice: ReminderNotice) -> None:
        _print_ts("\n" + notice.as_plain_text() + "\n")

    async def send_text(
        self,
        *,
        text: str,
        room_id: str | None = None,
        to_user_id: str | None = None,
    ) -> None:
        _print_ts(text)


async def run_console_background(state: AppState, stop_event: asyncio.Event) -> None:
    """
    Reminder scheduler + heartbeat for console mode.

    The console has no remote transport, so the heartbeat only proves the
    background loop itself is alive.
    """
    settings = state.settings
    scanner, dispatcher = build_reminder_pipeline(state, ConsoleMessenger(), target=None)
    scheduler_task = asyncio.create_task(
        run_reminder_scheduler(
            scanner,
            dispatcher,
            interval_seconds=float(getattr(settings, "reminder_interval_seconds", 60.0)),
        )
    )

    beat_s = max(1.0, float(getattr(settings, "heartbeat_interval_seconds", 60.0)))
    try:
        while not stop_event.is_set():
            state.health.heartbeat()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=beat_s)
    finally:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task
        logger.info("Console background loop stopped.")


def run_console_loop(state: AppState, router: BotRouter) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Describe a task, or type 'help'. Use /help for board commands, /exit to quit.\n")

    app_name = str(getattr(getattr(state, "settings", None), "app_name", "kanbot"))

    while True:
        try:
            user_input = input(">>> You: ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> You: {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = command_registry.handle(state, user_input)
            if reply is None:
                reply = router.handle(user_input)
        except Exception as e:
            logger.exception("Console handler crashed.")
            reply = f"Sorry, I encountered an error: {e}"

        _print_ts(f"<<< {app_name}: {reply}\n")

    logger.info("Console connector finished.")
