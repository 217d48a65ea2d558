# tests/test_reminder_scanner.py

from __future__ import annotations

import asyncio
import time

import pytest

from kanbot.reminders.scanner import (
    ReminderScanner,
    build_candidate,
    is_reminder_due,
    minutes_until,
    select_candidates,
)

from .fakes import FakeTaskRepo, make_task


def test_threshold_is_one_sided() -> None:
    due = 10_000.0
    task = make_task(due_at=due, remind_minutes=30)

    assert not is_reminder_due(task, due - 31 * 60)
    assert is_reminder_due(task, due - 30 * 60)
    assert is_reminder_due(task, due - 29 * 60)
    # Past due still qualifies while the latch is open.
    assert is_reminder_due(task, due + 3600)


def test_latched_or_incomplete_tasks_never_qualify() -> None:
    now = 10_000.0
    assert not is_reminder_due(make_task(due_at=now, remind_minutes=5, reminder_sent=True), now)
    assert not is_reminder_due(make_task(due_at=None, remind_minutes=5), now)
    assert not is_reminder_due(make_task(due_at=now, remind_minutes=None), now)


def test_zero_lead_fires_at_due_time() -> None:
    due = 10_000.0
    task = make_task(due_at=due, remind_minutes=0)
    assert not is_reminder_due(task, due - 1)
    assert is_reminder_due(task, due)


@pytest.mark.parametrize(
    ("delta_s", "expected"),
    [
        (30 * 60, 30),
        (89.0, 1),
        (90.0, 2),  # half-up
        (29.0, 0),
        (-600.0, 0),  # past due clamps to zero
    ],
)
def test_minutes_until_rounds_half_up(delta_s: float, expected: int) -> None:
    now = 50_000.0
    assert minutes_until(now + delta_s, now) == expected


def test_candidate_carries_whole_hours() -> None:
    now = 50_000.0
    c = build_candidate(make_task(due_at=now + 150 * 60, remind_minutes=180), now)
    assert c.minutes_remaining == 150
    assert c.hours_remaining == 2


def test_select_candidates_filters_superset() -> None:
    now = 50_000.0
    due = make_task("a", due_at=now + 60, remind_minutes=5)
    not_yet = make_task("b", due_at=now + 3600, remind_minutes=5)
    sent = make_task("c", due_at=now, remind_minutes=5, reminder_sent=True)

    ids = [c.task.id for c in select_candidates([due, not_yet, sent], now)]
    assert ids == ["a"]


@pytest.mark.asyncio
async def test_scan_is_idempotent_and_read_only() -> None:
    now = time.time()
    repo = FakeTaskRepo([make_task("t1", due_at=now + 600, remind_minutes=30)])
    scanner = ReminderScanner(repo)

    first = await scanner.scan(now)
    second = await scanner.scan(now)

    assert [c.task.id for c in first] == ["t1"]
    assert [c.task.id for c in second] == ["t1"]
    assert repo.mark_calls == []
    assert repo.tasks["t1"].reminder_sent is False


@pytest.mark.asyncio
async def test_scan_returns_empty_on_store_failure() -> None:
    now = time.time()
    repo = FakeTaskRepo([make_task("t1", due_at=now, remind_minutes=0)])
    repo.fail_list = True

    assert await ReminderScanner(repo).scan(now) == []


@pytest.mark.asyncio
async def test_scan_returns_empty_on_store_timeout() -> None:
    class SlowRepo(FakeTaskRepo):
        def list_tasks_needing_reminders(self, *, now_ts: float):
            time.sleep(0.5)
            return super().list_tasks_needing_reminders(now_ts=now_ts)

    now = time.time()
    repo = SlowRepo([make_task("t1", due_at=now, remind_minutes=0)])
    scanner = ReminderScanner(repo, timeout_seconds=0.1)

    assert await scanner.scan(now) == []
    # let the worker thread finish before the loop closes
    await asyncio.sleep(0.6)


@pytest.mark.asyncio
async def test_scan_against_sqlite_store(store) -> None:
    from kanbot.tasks.task_models import TaskDraft

    now = time.time()
    due_soon = store.create_task(TaskDraft(title="Call Acme", due_at=now + 20 * 60, remind_minutes=30))
    store.create_task(TaskDraft(title="Later", due_at=now + 5 * 3600, remind_minutes=30))
    store.create_task(TaskDraft(title="No reminder", due_at=now + 60))

    candidates = await ReminderScanner(store).scan(now)

    assert [c.task.id for c in candidates] == [due_soon.id]
    assert candidates[0].minutes_remaining == 20
