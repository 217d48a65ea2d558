# src/kanbot/reminders/scanner.py

"""
Reminder scanner.

Selection rule (one-sided threshold): a task is due for a reminder when
- remind_minutes is set,
- reminder_sent is False,
- due_at is set,
- now >= due_at - remind_minutes * 60.

Once crossed it stays crossed until the reminder is latched
(reminder_sent=True) or due_at/remind_minutes change, which re-arms it.
Scanning never mutates the store.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass

from ..core.ports import TaskRepo
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ReminderCandidate:
    task: Task
    minutes_remaining: int
    hours_remaining: int


def is_reminder_due(task: Task, now_ts: float) -> bool:
    if task.remind_minutes is None or task.reminder_sent or task.due_at is None:
        return False
    return now_ts >= task.due_at - task.remind_minutes * 60


def minutes_until(due_at: float, now_ts: float) -> int:
    """Whole minutes until due_at, rounded half-up, never negative."""
    return max(0, math.floor((due_at - now_ts) / 60.0 + 0.5))


def build_candidate(task: Task, now_ts: float) -> ReminderCandidate:
    if task.due_at is None:
        raise ValueError(f"Task {task.id} has no due date")
    minutes = minutes_until(task.due_at, now_ts)
    return ReminderCandidate(task=task, minutes_remaining=minutes, hours_remaining=minutes // 60)


def select_candidates(tasks: list[Task], now_ts: float) -> list[ReminderCandidate]:
    return [build_candidate(t, now_ts) for t in tasks if is_reminder_due(t, now_ts)]


class ReminderScanner:
    """
    Fetch reminder-eligible tasks from the store and turn them into candidates.

    The store query runs in a worker thread bounded by timeout_seconds.
    Any store failure yields an empty list; the next cycle retries.
    """

    def __init__(self, task_store: TaskRepo, *, timeout_seconds: float = 10.0) -> None:
        self._store = task_store
        self._timeout = max(0.1, float(timeout_seconds))

    async def scan(self, now_ts: float) -> list[ReminderCandidate]:
        try:
            tasks = await asyncio.wait_for(
                asyncio.to_thread(self._store.list_tasks_needing_reminders, now_ts=now_ts),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning("Reminder scan timed out after %.1fs; skipping this cycle", self._timeout)
            return []
        except Exception:
            logger.exception("list_tasks_needing_reminders failed; skipping this cycle")
            return []

        # The store pre-filters; re-apply the rule so any repo may return a superset.
        candidates = select_candidates(list(tasks or []), now_ts)
        if candidates:
            logger.info("Reminder scan: %d task(s) due", len(candidates))
        return candidates
