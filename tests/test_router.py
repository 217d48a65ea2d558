# tests/test_router.py

from __future__ import annotations

import json
from zoneinfo import ZoneInfo

import pytest

from kanbot.bot.interpreter import MessageInterpreter
from kanbot.bot.router import HELP_TEXT, BotRouter, Intent, classify_message, pick_default_stage
from kanbot.llm.errors import LLMUnavailableError
from kanbot.tasks.task_models import Priority, Stage, TaskDraft

from .fakes import FakeLLMClient

UTC = ZoneInfo("UTC")


def _router(store, llm) -> BotRouter:
    return BotRouter(store, MessageInterpreter(llm, tz=UTC), tz=UTC)


@pytest.mark.parametrize(
    ("text", "intent"),
    [
        ("", Intent.HELP),
        ("Hello", Intent.HELP),
        ("help", Intent.HELP),
        ("tasks", Intent.SHOW_TASKS),
        ("show me everything", Intent.SHOW_TASKS),
        ("List tasks please", Intent.SHOW_TASKS),
        ("clients", Intent.LIST_CLIENTS),
        ("list clients", Intent.LIST_CLIENTS),
        ("stages", Intent.LIST_STAGES),
        ("list stages", Intent.LIST_STAGES),
        ("Call Acme about the contract", Intent.CREATE),
        ("help me write a proposal", Intent.CREATE),
    ],
)
def test_classify_message(text: str, intent: Intent) -> None:
    assert classify_message(text) == intent


def test_pick_default_stage_prefers_to_do() -> None:
    stages = [
        Stage(id="a", name="Backlog", order=0, color="#000"),
        Stage(id="b", name="To Do", order=1, color="#000"),
    ]
    assert pick_default_stage(stages).id == "b"
    assert pick_default_stage(stages[:1]).id == "a"
    assert pick_default_stage([]) is None


def test_help_reply(store) -> None:
    assert _router(store, FakeLLMClient()).handle("hi") == HELP_TEXT


def test_create_task_from_llm_output(store) -> None:
    raw = json.dumps(
        {
            "title": "Send pricing",
            "client": "TechStart",
            "priority": "high",
            "dueDate": "2024-01-16T15:00",
            "remindMeInMinutes": 60,
            "checklist": [{"text": "Draft email"}, {"text": "Attach PDF"}],
        }
    )
    reply = _router(store, FakeLLMClient(raw)).handle("Send pricing to TechStart tomorrow 3pm, remind me 1h before")

    assert reply.startswith("\N{WHITE HEAVY CHECK MARK} Task created!")
    assert "Client: TechStart" in reply
    assert "Priority: high" in reply
    assert "Stage: To Do" in reply
    assert "Due: 2024-01-16 at 3:00 PM" in reply
    assert "Reminder: 60 minutes before" in reply
    assert "Checklist: 2 items" in reply

    (task,) = store.list_tasks()
    assert task.stage_id == "todo"
    assert task.priority == Priority.HIGH
    assert [i.text for i in task.checklist] == ["Draft email", "Attach PDF"]
    assert not any(i.id.startswith("temp-") for i in task.checklist)


def test_create_task_falls_back_without_llm(store) -> None:
    reply = _router(store, FakeLLMClient(error=LLMUnavailableError("offline"))).handle("urgent: fix bug")

    assert "Task created!" in reply
    (task,) = store.list_tasks()
    assert task.title == "urgent: fix bug"
    assert task.priority == Priority.HIGH


def test_create_task_with_huge_lead_time_drops_the_reminder(store) -> None:
    raw = '{"title": "Call Acme", "dueDate": "2024-01-16T15:00", "remindMeInMinutes": 100000000000000000000}'
    reply = _router(store, FakeLLMClient(raw)).handle("call acme tomorrow, remind me way ahead")

    assert "Task created!" in reply
    assert "Reminder:" not in reply
    (task,) = store.list_tasks()
    assert task.title == "Call Acme"
    assert task.remind_minutes is None


def test_forced_create_intent_skips_classification(store) -> None:
    reply = _router(store, FakeLLMClient(error=LLMUnavailableError("offline"))).handle(
        "show the demo to Acme", intent=Intent.CREATE
    )

    assert "Task created!" in reply
    (task,) = store.list_tasks()
    assert task.title == "show the demo to Acme"
    assert store.list_activity(limit=1)[0].bot_action == Intent.CREATE.value


def test_show_tasks_groups_by_stage(store) -> None:
    store.create_task(TaskDraft(title="Write brief", client="Acme", priority=Priority.LOW))
    store.create_task(TaskDraft(title="Ship it"), stage_id="in-progress")

    reply = _router(store, FakeLLMClient()).handle("show tasks")
    lines = reply.splitlines()

    assert lines[0] == "\N{CLIPBOARD} Your Tasks"
    assert lines.index("To Do") < lines.index("In Progress")
    assert "\N{LARGE GREEN CIRCLE} Write brief (Acme)" in lines
    assert "\N{LARGE YELLOW CIRCLE} Ship it" in lines


def test_show_tasks_empty_board(store) -> None:
    assert _router(store, FakeLLMClient()).handle("tasks").startswith("No tasks found")


def test_list_clients_is_distinct_and_sorted(store) -> None:
    for client in ("Zeta", "Acme", "Acme", ""):
        store.create_task(TaskDraft(title="t", client=client))

    reply = _router(store, FakeLLMClient()).handle("clients")
    assert reply.splitlines()[1:] == ["- Acme", "- Zeta"]


def test_list_stages(store) -> None:
    reply = _router(store, FakeLLMClient()).handle("stages")
    assert reply.splitlines()[1:] == ["- To Do", "- In Progress", "- Complete"]


def test_handler_error_becomes_apology_and_is_logged(store, monkeypatch) -> None:
    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "list_client_names", broken)
    reply = _router(store, FakeLLMClient()).handle("clients")

    assert reply == "Sorry, I encountered an error: disk full"
    (activity,) = store.list_activity()
    assert activity.bot_action == Intent.LIST_CLIENTS.value
    assert activity.success is False
    assert activity.error == "disk full"


def test_activity_is_recorded_for_each_message(store) -> None:
    router = _router(store, FakeLLMClient())
    router.handle("stages")
    router.handle("tasks")

    actions = [a.bot_action for a in store.list_activity()]
    assert actions == ["show_tasks", "list_stages"]
