# src/kanbot/bot/router.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from enum import StrEnum

from ..core.ports import TaskRepo
from ..reminders.dispatcher import format_due_clock, priority_badge
from ..tasks.task_models import Stage, Task
from .interpreter import MessageInterpreter

logger = logging.getLogger(__name__)

DEFAULT_STAGE_ID = "todo"
DEFAULT_STAGE_NAME = "to do"

HELP_TEXT = (
    "Hi! I can help you manage tasks. Here's what I can do:\n"
    "- describe a task (e.g. `Create a proposal for Acme Corp, high priority, due Friday`) and I'll create it\n"
    "- `tasks` or `show tasks` - show all tasks (`show tasks summary` adds a short summary)\n"
    "- `clients` - list all clients\n"
    "- `stages` - list all stages\n"
    "- `/help` - board commands (move, due dates, reminders, stages)"
)

GREETINGS = {"help", "hi", "hello", "hey"}


class Intent(StrEnum):
    HELP = "help"
    SHOW_TASKS = "show_tasks"
    LIST_CLIENTS = "list_clients"
    LIST_STAGES = "list_stages"
    CREATE = "create_task"


def classify_message(text: str) -> Intent:
    lower = (text or "").strip().lower()

    if not lower or lower in GREETINGS:
        return Intent.HELP
    if lower.startswith("show") or lower.startswith("list tasks") or lower == "tasks":
        return Intent.SHOW_TASKS
    if lower.startswith("list clients") or lower.startswith("clients"):
        return Intent.LIST_CLIENTS
    if lower.startswith("stages") or lower == "list stages":
        return Intent.LIST_STAGES
    return Intent.CREATE


def pick_default_stage(stages: list[Stage]) -> Stage | None:
    """The stage named "To Do" if present, else the first stage."""
    for stage in stages:
        if stage.name.strip().lower() == DEFAULT_STAGE_NAME:
            return stage
    return stages[0] if stages else None


def format_due(due_at: float, tz: tzinfo | None = None) -> str:
    dt = datetime.fromtimestamp(due_at, tz) if tz is not None else datetime.fromtimestamp(due_at)
    return dt.strftime("%Y-%m-%d") + format_due_clock(due_at, tz)


@dataclass(slots=True, frozen=True)
class RoutedReply:
    intent: Intent
    text: str
    success: bool = True
    error: str | None = None


class BotRouter:
    """
    Classify an inbound chat message and run the matching handler.

    Pure dispatch: no queueing, no retries. Messages are independent, so
    connectors may call handle() concurrently.
    """

    def __init__(
            self,
            task_store: TaskRepo,
            interpreter: MessageInterpreter,
            *,
            tz: tzinfo | None = None,
    ) -> None:
        self._store = task_store
        self._interpreter = interpreter
        self._tz = tz

    def route(self, text: str, intent: Intent | None = None) -> RoutedReply:
        """Run the handler for `intent`, or for the classified intent when None."""
        text = (text or "").strip()
        if intent is None:
            intent = classify_message(text)

        try:
            if intent == Intent.HELP:
                reply = HELP_TEXT
            elif intent == Intent.SHOW_TASKS:
                reply = self._show_tasks(summarize="summar" in text.lower())
            elif intent == Intent.LIST_CLIENTS:
                reply = self._list_clients()
            elif intent == Intent.LIST_STAGES:
                reply = self._list_stages()
            else:
                reply = self._create_task(text)
        except Exception as e:
            logger.exception("Router handler failed intent=%s", intent.value)
            return RoutedReply(
                intent=intent,
                text=f"Sorry, I encountered an error: {e}",
                success=False,
                error=str(e),
            )

        return RoutedReply(intent=intent, text=reply)

    def handle(self, text: str, *, intent: Intent | None = None) -> str:
        """Route text, record it in the activity log and return the reply."""
        routed = self.route(text, intent)
        if text and text.strip():
            try:
                self._store.record_activity(
                    user_request=text.strip(),
                    bot_action=routed.intent.value,
                    success=routed.success,
                    error=routed.error,
                )
            except Exception:
                logger.warning("Failed to record bot activity", exc_info=True)
        return routed.text

    # ---- handlers ----

    def _show_tasks(self, *, summarize: bool = False) -> str:
        tasks = self._store.list_tasks()
        if not tasks:
            return "No tasks found. Create one by describing it to me!"

        stages = self._store.list_stages()
        by_stage: dict[str, list[Task]] = {s.id: [] for s in stages}
        orphans: list[Task] = []
        for t in tasks:
            if t.stage_id in by_stage:
                by_stage[t.stage_id].append(t)
            else:
                orphans.append(t)

        lines = ["\N{CLIPBOARD} Your Tasks", ""]
        if summarize:
            lines.extend([self._interpreter.summarize_tasks(tasks), ""])

        groups = [(s.name, by_stage[s.id]) for s in stages]
        if orphans:
            groups.append(("(no stage)", orphans))

        for name, group in groups:
            if not group:
                continue
            lines.append(name)
            for t in group:
                line = f"{priority_badge(t.priority)} {t.title}"
                if t.client:
                    line += f" ({t.client})"
                lines.append(line)
            lines.append("")

        return "\n".join(lines).rstrip()

    def _list_clients(self) -> str:
        clients = self._store.list_client_names()
        if not clients:
            return "No clients found yet. Create a task with a client name to add one!"
        return "\N{BUSTS IN SILHOUETTE} Clients\n" + "\n".join(f"- {c}" for c in clients)

    def _list_stages(self) -> str:
        stages = self._store.list_stages()
        if not stages:
            return "No stages found."
        return "Stages\n" + "\n".join(f"- {s.name}" for s in stages)

    def _create_task(self, text: str) -> str:
        clients = self._store.list_client_names()
        stages = self._store.list_stages()
        draft = self._interpreter.interpret(text, clients)

        stage = pick_default_stage(stages)
        task = self._store.create_task(draft, stage_id=stage.id if stage else DEFAULT_STAGE_ID)
        logger.info("Task created from chat id=%s title=%r", task.id, task.title)

        lines = [
            "\N{WHITE HEAVY CHECK MARK} Task created!",
            task.title,
            f"Client: {task.client or 'None'}",
            f"Priority: {task.priority.value}",
            f"Stage: {stage.name if stage else 'To Do'}",
        ]
        if task.due_at is not None:
            lines.append(f"Due: {format_due(task.due_at, self._tz)}")
            if task.remind_minutes is not None:
                lines.append(f"Reminder: {task.remind_minutes} minutes before")
        if task.checklist:
            lines.append(f"Checklist: {len(task.checklist)} items")
        lines.append(f"Id: {task.id}")
        return "\n".join(lines)
