# tests/fakes.py

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace

from kanbot.reminders.dispatcher import ReminderNotice
from kanbot.tasks.task_models import Priority, Task


class FakeLLMClient:
    """
    Deterministic LLM client for unit tests.

    - Captures calls for assertions
    - Returns next_text, or raises `error` when set
    """

    def __init__(self, next_text: str = "{}", error: Exception | None = None) -> None:
        self.next_text = next_text
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.next_text


@dataclass(slots=True)
class PostedNotice:
    target: str | None
    notice: ReminderNotice


@dataclass(slots=True)
class SentMessage:
    text: str
    room_id: str | None
    to_user_id: str | None


@dataclass(slots=True)
class FakeMessenger:
    """
    Fake OutboundMessenger used by reminder tests.

    With fail=True every post raises, like a chat transport that is down.
    """

    fail: bool = False
    posted: list[PostedNotice] = field(default_factory=list)
    sent: list[SentMessage] = field(default_factory=list)

    async def post_message(self, *, target: str | None, notice: ReminderNotice) -> None:
        if self.fail:
            raise ConnectionError("chat transport unavailable")
        self.posted.append(PostedNotice(target=target, notice=notice))

    async def send_text(
        self,
        *,
        text: str,
        room_id: str | None = None,
        to_user_id: str | None = None,
    ) -> None:
        self.sent.append(SentMessage(text=text, room_id=room_id, to_user_id=to_user_id))


def make_task(
    task_id: str = "t1",
    *,
    title: str = "Send invoice",
    client: str = "Acme",
    priority: Priority = Priority.HIGH,
    due_at: float | None = None,
    remind_minutes: int | None = None,
    reminder_sent: bool = False,
    stage_id: str = "todo",
) -> Task:
    now = time.time()
    return Task(
        id=task_id,
        title=title,
        client=client,
        priority=priority,
        stage_id=stage_id,
        due_at=due_at,
        remind_minutes=remind_minutes,
        reminder_sent=reminder_sent,
        order=0,
        created_at=now,
        updated_at=now,
    )


class FakeTaskRepo:
    """
    In-memory reminder repo used for scanner/dispatcher unit tests.

    This avoids SQLite and makes tests purely about reminder logic:
    threshold selection, latching and messenger calls.
    """

    def __init__(self, tasks: list[Task] | None = None) -> None:
        self.tasks = {t.id: t for t in (tasks or [])}
        self.fail_list = False
        self.fail_mark = False
        self.list_calls = 0
        self.mark_calls: list[str] = []

    def list_tasks_needing_reminders(self, *, now_ts: float) -> list[Task]:
        self.list_calls += 1
        if self.fail_list:
            raise RuntimeError("store unavailable")
        out = [
            t
            for t in self.tasks.values()
            if t.remind_minutes is not None
            and not t.reminder_sent
            and t.due_at is not None
            and t.due_at - t.remind_minutes * 60 <= now_ts
        ]
        out.sort(key=lambda t: (t.due_at, t.created_at))
        return out

    def mark_reminder_sent(self, task_id: str) -> bool:
        self.mark_calls.append(task_id)
        if self.fail_mark:
            raise RuntimeError("store unavailable")
        t = self.tasks.get(task_id)
        if t is None:
            return False
        self.tasks[task_id] = replace(t, reminder_sent=True, updated_at=time.time())
        return True
