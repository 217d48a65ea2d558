# src/kanbot/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts connectors:
- console REPL in the main thread (optional),
- Matrix connector in a background thread (optional); it owns the reminder
  scheduler and posts reminders to the reminder room,
- without Matrix, a console background loop runs the reminder scheduler and
  prints reminders to stdout.
"""

from __future__ import annotations

import logging
import signal
import threading

from ..config import get_settings
from ..connectors.background import BackgroundRunner, start_in_background
from ..connectors.console_connector import run_console_background, run_console_loop
from ..logging_setup import level_from_name, setup_logging
from .bootstrap import build_router, create_initial_state

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(
        log_dir=getattr(settings, "data_dir", ".local/kanbot"),
        console_level=level_from_name(getattr(settings, "log_level", "INFO")),
    )

    logger.info("Starting %s... (log file: %s)", getattr(settings, "app_name", "kanbot"), log_file)

    state = create_initial_state(settings=settings)

    runner: BackgroundRunner | None
    if settings.matrix_enabled:
        from ..connectors.matrix_connector import start_matrix_in_background

        runner = start_matrix_in_background(state)
    else:
        async def _console_background(stop_event):
            await run_console_background(state, stop_event)

        runner = start_in_background("reminders", _console_background)

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()
        if settings.console_enabled:
            # unblock input() in the REPL
            raise KeyboardInterrupt

    # The console REPL handles Ctrl+C itself (KeyboardInterrupt in input()).
    signals = [signal.SIGTERM] if settings.console_enabled else [signal.SIGINT, signal.SIGTERM]
    for sig in signals:
        try:
            signal.signal(sig, _handle_signal)
        except (ValueError, OSError):
            logger.debug("Cannot install handler for signal %s", sig)

    try:
        if settings.console_enabled:
            run_console_loop(state, build_router(state))
            stop_main.set()
        else:
            logger.info("Console disabled. Running background connectors only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        if runner is not None:
            runner.stop()
            runner.join(timeout=10.0)

        state.health.mark_stopped("shutdown")
        logger.info("Bye.")


if __name__ == "__main__":
    main()
