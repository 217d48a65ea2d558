# tests/test_reminder_scheduler.py

from __future__ import annotations

import asyncio
import contextlib
import time

import pytest

from kanbot.reminders.dispatcher import ReminderDispatcher
from kanbot.reminders.scanner import ReminderScanner
from kanbot.reminders.scheduler import run_reminder_cycle, run_reminder_scheduler
from kanbot.tasks.task_models import TaskDraft, TaskPatch

from .fakes import FakeMessenger, FakeTaskRepo, make_task


@pytest.mark.asyncio
async def test_reminder_fires_once_at_threshold(store) -> None:
    due = time.time() + 24 * 3600
    task = store.create_task(TaskDraft(title="Quarterly report", client="Acme", due_at=due, remind_minutes=30))

    messenger = FakeMessenger()
    scanner = ReminderScanner(store)
    dispatcher = ReminderDispatcher(store, messenger)

    # T-31: nothing yet
    report = await run_reminder_cycle(scanner, dispatcher, now_ts=due - 31 * 60)
    assert report.sent == []
    assert messenger.posted == []

    # T-30: threshold crossed
    report = await run_reminder_cycle(scanner, dispatcher, now_ts=due - 30 * 60)
    assert report.sent == [task.id]
    assert len(messenger.posted) == 1
    assert messenger.posted[0].notice.text.startswith('Reminder: "Quarterly report" is due in 30 minutes')

    # T-29: latched, no repeat
    report = await run_reminder_cycle(scanner, dispatcher, now_ts=due - 29 * 60)
    assert report.sent == []
    assert len(messenger.posted) == 1
    assert store.get_task(task.id).reminder_sent is True


@pytest.mark.asyncio
async def test_changing_due_date_rearms_reminder(store) -> None:
    now = time.time()
    task = store.create_task(TaskDraft(title="Renew domain", due_at=now + 600, remind_minutes=15))

    messenger = FakeMessenger()
    scanner = ReminderScanner(store)
    dispatcher = ReminderDispatcher(store, messenger)

    await run_reminder_cycle(scanner, dispatcher, now_ts=now)
    assert len(messenger.posted) == 1

    new_due = now + 3 * 3600
    updated = store.update_task(task.id, TaskPatch(due_at=new_due))
    assert updated.reminder_sent is False

    await run_reminder_cycle(scanner, dispatcher, now_ts=now)
    assert len(messenger.posted) == 1

    await run_reminder_cycle(scanner, dispatcher, now_ts=new_due - 15 * 60)
    assert len(messenger.posted) == 2


@pytest.mark.asyncio
async def test_failed_delivery_is_retried_next_cycle(store) -> None:
    now = time.time()
    task = store.create_task(TaskDraft(title="Pay rent", due_at=now + 60, remind_minutes=5))

    messenger = FakeMessenger(fail=True)
    scanner = ReminderScanner(store)
    dispatcher = ReminderDispatcher(store, messenger)

    report = await run_reminder_cycle(scanner, dispatcher, now_ts=now)
    assert report.failed == [task.id]
    assert store.get_task(task.id).reminder_sent is False

    messenger.fail = False
    report = await run_reminder_cycle(scanner, dispatcher, now_ts=now + 60)
    assert report.sent == [task.id]
    assert len(messenger.posted) == 1
    assert "Due now" in messenger.posted[0].notice.due_line


@pytest.mark.asyncio
async def test_store_outage_skips_cycle_without_posting() -> None:
    now = time.time()
    repo = FakeTaskRepo([make_task("t1", due_at=now, remind_minutes=0)])
    repo.fail_list = True
    messenger = FakeMessenger()

    report = await run_reminder_cycle(ReminderScanner(repo), ReminderDispatcher(repo, messenger), now_ts=now)

    assert report.sent == []
    assert messenger.posted == []


@pytest.mark.asyncio
async def test_scheduler_loop_runs_until_cancelled() -> None:
    now = time.time()
    repo = FakeTaskRepo([make_task("t1", due_at=now + 60, remind_minutes=5)])
    messenger = FakeMessenger()

    task = asyncio.create_task(
        run_reminder_scheduler(
            ReminderScanner(repo),
            ReminderDispatcher(repo, messenger),
            interval_seconds=0.01,
            clock=lambda: now,
        )
    )
    await asyncio.sleep(0.2)
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task

    assert task.cancelled()
    assert repo.list_calls > 1
    assert len(messenger.posted) == 1
    assert repo.tasks["t1"].reminder_sent is True
