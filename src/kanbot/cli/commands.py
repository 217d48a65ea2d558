# src/kanbot/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from ..bot.interpreter import parse_due_date
from ..bot.router import Intent, format_due
from ..core.state import AppState
from ..reminders.dispatcher import priority_badge, resolve_timezone
from ..tasks.task_models import Task, TaskFilter, TaskPatch
from .bootstrap import build_router

CommandHandler = Callable[[AppState, list[str], str | None, str | None], str]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /status, /due, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Validation errors from the store (ValueError / LookupError) are
        returned to the user as the reply.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return handler(state, args, user_id, room_id)
        except (ValueError, LookupError) as e:
            logger.info("Command /%s rejected: %s", name, e)
            return f"Rejected: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _tz(state: AppState):
    return resolve_timezone(getattr(state.settings, "timezone", ""))


def _require_task(state: AppState, task_id: str) -> Task:
    task = state.task_store.get_task(task_id)
    if task is None:
        raise LookupError(f"Task not found: {task_id}")
    return task


def _format_task(state: AppState, task: Task) -> str:
    lines = [
        f"{priority_badge(task.priority)} {task.title}",
        f"  id: {task.id}",
        f"  client: {task.client or 'None'}",
        f"  stage: {task.stage_id}",
    ]
    if task.due_at is not None:
        lines.append(f"  due: {format_due(task.due_at, _tz(state))}")
    if task.remind_minutes is not None:
        sent = "sent" if task.reminder_sent else "pending"
        lines.append(f"  reminder: {task.remind_minutes} min before ({sent})")
    for item in task.checklist:
        mark = "x" if item.completed else " "
        lines.append(f"  [{mark}] {item.text}  ({item.id})")
    return "\n".join(lines)


def cmd_help(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    snap = state.health.snapshot()
    if snap.last_heartbeat:
        last = datetime.fromtimestamp(snap.last_heartbeat).astimezone().strftime("%Y-%m-%d %H:%M:%S")
    else:
        last = "never"
    models = ", ".join(list(getattr(state.llm, "models", []) or [])) or "offline (rule-based parsing)"
    interval = float(getattr(state.settings, "reminder_interval_seconds", 60.0))
    lines = [
        "Status:",
        f"  Bot: {snap.state.value} (connected={snap.connected}, last heartbeat: {last})",
        f"  Models (priority -> fallback): {models}",
        f"  Reminder check interval: {interval:.0f}s",
        f"  Tasks: {len(state.task_store.list_tasks())}",
    ]
    if snap.error:
        lines.append(f"  Error: {snap.error}")
    return "\n".join(lines)


def cmd_task(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/task <description> -> create a task, same as describing it in chat."""
    if not args:
        return "Usage: /task <description>"
    return build_router(state).handle(" ".join(args), intent=Intent.CREATE)


def cmd_show(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/show <id> -> task details with checklist item ids."""
    if len(args) != 1:
        return "Usage: /show <task_id>"
    return _format_task(state, _require_task(state, args[0]))


def cmd_find(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/find <text> -> tasks whose title or checklist matches, with ids."""
    if not args:
        return "Usage: /find <text>"
    tasks = state.task_store.list_tasks(TaskFilter(search=" ".join(args)))
    if not tasks:
        return "No matching tasks."
    return "\n".join(f"{priority_badge(t.priority)} {t.title}  ({t.id})" for t in tasks)


def cmd_stage(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """
    /stage list                -> stages with ids
    /stage add <name>          -> create a stage at the end
    /stage del <stage_id>      -> delete an empty stage
    /stage order <id> <id> ... -> reorder stages
    /stage rename <id> <name>  -> rename a stage
    """
    usage = (
        "Usage: /stage list | /stage add <name> | /stage del <stage_id> "
        "| /stage order <id> <id> ... | /stage rename <stage_id> <name>"
    )
    if not args:
        return usage

    sub = args[0].lower()
    store = state.task_store

    if sub == "list":
        stages = store.list_stages()
        return "\n".join(f"{s.order}. {s.name}  ({s.id})" for s in stages) or "No stages found."

    if sub == "add":
        if len(args) < 2:
            return "Usage: /stage add <name>"
        stage = store.create_stage(" ".join(args[1:]))
        return f"Stage created: {stage.name} ({stage.id})"

    if sub in ("del", "delete", "rm"):
        if len(args) != 2:
            return "Usage: /stage del <stage_id>"
        store.delete_stage(args[1])
        return f"Stage deleted: {args[1]}"

    if sub == "order":
        if len(args) < 2:
            return "Usage: /stage order <id> <id> ..."
        stages = store.reorder_stages(args[1:])
        return "Stages reordered: " + ", ".join(s.name for s in stages)

    if sub == "rename":
        if len(args) < 3:
            return "Usage: /stage rename <stage_id> <name>"
        stage = store.update_stage(args[1], name=" ".join(args[2:]))
        return f"Stage renamed: {stage.name} ({stage.id})"

    return usage


def cmd_move(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if len(args) != 2:
        return "Usage: /move <task_id> <stage_id>"
    task = state.task_store.update_task(args[0], TaskPatch(stage_id=args[1]))
    return f"Moved \"{task.title}\" to {task.stage_id}."


def cmd_due(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """
    /due <task_id> <YYYY-MM-DD[THH:MM]|none> [minutes|none]

    Changing the due date (or lead time) re-arms the reminder.
    """
    if len(args) not in (2, 3):
        return "Usage: /due <task_id> <YYYY-MM-DD[THH:MM]|none> [remind_minutes|none]"

    task_id, raw_due = args[0], args[1]
    if raw_due.lower() == "none":
        due_at = None
    else:
        due_at = parse_due_date(raw_due, _tz(state))
        if due_at is None:
            raise ValueError(f"Invalid due date: {raw_due}")

    patch = TaskPatch(due_at=due_at)
    if len(args) == 3:
        patch.remind_minutes = _parse_minutes(args[2])

    task = state.task_store.update_task(task_id, patch)
    return "Updated:\n" + _format_task(state, task)


def _parse_minutes(raw: str) -> int | None:
    if raw.lower() in ("none", "off"):
        return None
    try:
        minutes = int(raw)
    except ValueError:
        raise ValueError(f"Invalid minutes: {raw}") from None
    if minutes < 0:
        raise ValueError("Reminder lead time must be >= 0 minutes")
    return minutes


def cmd_remind(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/remind <task_id> <minutes|off>"""
    if len(args) != 2:
        return "Usage: /remind <task_id> <minutes|off>"
    task = state.task_store.update_task(args[0], TaskPatch(remind_minutes=_parse_minutes(args[1])))
    if task.remind_minutes is None:
        return f"Reminder off for \"{task.title}\"."
    if task.due_at is None:
        return f"Reminder set to {task.remind_minutes} min, but \"{task.title}\" has no due date yet."
    return f"Reminder set: {task.remind_minutes} min before \"{task.title}\" is due."


def cmd_check(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/check <task_id> <item_id> [on|off|del] (toggles when omitted)"""
    if len(args) not in (2, 3):
        return "Usage: /check <task_id> <item_id> [on|off|del]"

    task = _require_task(state, args[0])
    current = next((i for i in task.checklist if i.id == args[1]), None)
    if current is None:
        raise LookupError(f"Checklist item not found: {args[1]}")

    if len(args) == 3 and args[2].lower() in ("del", "delete", "rm"):
        state.task_store.delete_checklist_item(task.id, current.id)
        return f"Removed: {current.text}"

    if len(args) == 3:
        completed = args[2].lower() in ("on", "1", "true", "yes", "done")
    else:
        completed = not current.completed

    item = state.task_store.update_checklist_item(task.id, current.id, completed=completed)
    mark = "x" if item.completed else " "
    return f"[{mark}] {item.text}"


def cmd_delete(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    if len(args) != 1:
        return "Usage: /delete <task_id>"
    if not state.task_store.delete_task(args[0]):
        raise LookupError(f"Task not found: {args[0]}")
    return f"Task deleted: {args[0]}"


def cmd_activity(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    """/activity [n] -> last n routed chat messages (newest first)."""
    try:
        limit = int(args[0]) if args else 10
    except ValueError:
        return "Usage: /activity [n]"
    items = state.task_store.list_activity(limit=max(1, limit))
    if not items:
        return "No bot activity yet."
    lines = ["Recent activity:"]
    for a in items:
        ts = datetime.fromtimestamp(a.timestamp).astimezone().strftime("%Y-%m-%d %H:%M")
        status = "ok" if a.success else f"failed: {a.error}"
        lines.append(f"  {ts} {a.bot_action} ({status}): {a.user_request[:60]}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Bot health, LLM models and reminder interval.")
registry.register("task", cmd_task, help_text="Create a task from a description: /task <text>.")
registry.register("show", cmd_show, help_text="Task details: /show <task_id>.")
registry.register("find", cmd_find, help_text="Search tasks by title/checklist: /find <text>.")
registry.register(
    "stage",
    cmd_stage,
    help_text="Stages: /stage list | add <name> | del <id> | order <id> <id> ... | rename <id> <name>",
)
registry.register("move", cmd_move, help_text="Move a task: /move <task_id> <stage_id>.")
registry.register(
    "due",
    cmd_due,
    help_text="Set due date: /due <task_id> <YYYY-MM-DD[THH:MM]|none> [remind_minutes|none].",
)
registry.register("remind", cmd_remind, help_text="Reminder lead time: /remind <task_id> <minutes|off>.")
registry.register("check", cmd_check, help_text="Checklist item: /check <task_id> <item_id> [on|off|del].")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <task_id>.", aliases=["rm"])
registry.register("activity", cmd_activity, help_text="Recent bot activity: /activity [n].")
