# src/kanbot/reminders/scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

A small polling loop that, every interval:
- scans the store for tasks whose reminder threshold has been crossed,
- dispatches one notice per task and latches it.

There is no explicit retry/backoff: a failed delivery simply stays eligible
and is picked up by the next tick. Ticks are serialized (the loop sleeps only
after a full cycle), so a slow cycle delays the next one instead of
overlapping it.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from .dispatcher import DispatchReport, ReminderDispatcher
from .scanner import ReminderScanner

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 0.01


async def run_reminder_cycle(
        scanner: ReminderScanner,
        dispatcher: ReminderDispatcher,
        *,
        now_ts: float | None = None,
) -> DispatchReport:
    """One scan + dispatch pass. Never raises for collaborator failures."""
    if now_ts is None:
        now_ts = time.time()

    candidates = await scanner.scan(now_ts)
    if not candidates:
        return DispatchReport()

    report = await dispatcher.dispatch(candidates)
    if report.failed or report.unmarked:
        logger.warning(
            "Reminder cycle: sent=%d failed=%d unmarked=%d",
            len(report.sent),
            len(report.failed),
            len(report.unmarked),
        )
    return report


async def run_reminder_scheduler(
        scanner: ReminderScanner,
        dispatcher: ReminderDispatcher,
        *,
        interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
) -> None:
    """
    Run reminder cycles forever: one immediately, then every interval_seconds.

    To stop the scheduler, cancel the coroutine/task.
    """
    sleep_s = max(MIN_INTERVAL_SECONDS, float(interval_seconds))
    logger.info("Reminder scheduler started (interval=%.1fs)", sleep_s)

    while True:
        try:
            await run_reminder_cycle(scanner, dispatcher, now_ts=clock())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reminder cycle crashed; continuing with next tick")

        await asyncio.sleep(sleep_s)
