# src/kanbot/bot/interpreter.py

"""
Message interpreter: free text -> TaskDraft.

Primary path asks the LLM for strict JSON. Anything that goes wrong there
(no client configured, rate limit, network error, non-JSON answer) drops to
a deterministic rule-based parser. interpret() never raises.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from datetime import date, datetime, time as dtime, tzinfo
from typing import Any

from ..core.ports import LLMClient
from ..llm.errors import LLMMalformedOutputError, LLMRateLimitError, LLMUnavailableError
from ..tasks.task_models import MAX_REMIND_MINUTES, DraftChecklistItem, Priority, Task, TaskDraft

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 100
DEFAULT_TITLE = "New Task"
DEFAULT_SUMMARY = "Here are your current tasks."

HIGH_PRIORITY_MARKERS = ("urgent", "asap", "high priority")
LOW_PRIORITY_MARKERS = ("low priority", "when you can")

TASK_PARSER_SYSTEM_PROMPT = """
You convert chat messages into structured tasks for a kanban board.

Extract these fields when present:
- title: short task title (required)
- client: client or company name, if mentioned
- priority: "high", "medium" or "low" (use "medium" when not stated)
- dueDate: "YYYY-MM-DD", or "YYYY-MM-DDTHH:MM" when a time of day is given
- remindMeInMinutes: integer minutes before dueDate to send a reminder, if asked for
- checklist: list of {"text": "..."} objects for subtasks

Output format:
Return STRICT JSON only. No extra text. No Markdown.

Examples:
Input: "Create a proposal for Acme Corp, high priority, due Friday"
Output: {"title": "Create proposal", "client": "Acme Corp", "priority": "high", "dueDate": "2024-01-19", "checklist": []}

Input: "Follow up with TechStart about the demo tomorrow at 3pm, remind me an hour before. Need to: send pricing, schedule call"
Output: {"title": "Follow up about demo", "client": "TechStart", "priority": "medium", "dueDate": "2024-01-16T15:00", "remindMeInMinutes": 60, "checklist": [{"text": "Send pricing"}, {"text": "Schedule call"}]}

Input: "urgent: fix bug in login page"
Output: {"title": "Fix bug in login page", "priority": "high", "checklist": []}
""".strip()

TASK_SUMMARY_SYSTEM_PROMPT = """
You summarize a list of kanban tasks in a brief, friendly chat message.
Two or three sentences. No Markdown tables.
""".strip()


def fallback_title(message: str) -> str:
    return (message or "")[:TITLE_MAX_CHARS].strip() or DEFAULT_TITLE


def detect_priority(message: str) -> Priority:
    text = (message or "").lower()
    if any(m in text for m in HIGH_PRIORITY_MARKERS):
        return Priority.HIGH
    if any(m in text for m in LOW_PRIORITY_MARKERS):
        return Priority.LOW
    return Priority.MEDIUM


def fallback_draft(message: str) -> TaskDraft:
    """Rule-based parse: message as title, keyword priority, nothing else."""
    return TaskDraft(title=fallback_title(message), priority=detect_priority(message))


def _extract_json_object(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("{") and raw.endswith("}"):
        return raw
    first = raw.find("{")
    last = raw.rfind("}")
    if first != -1 and last != -1 and last > first:
        return raw[first : last + 1]
    return raw


def parse_model_output(raw: str) -> dict[str, Any]:
    try:
        data = json.loads(_extract_json_object(raw or ""))
    except ValueError as e:
        raise LLMMalformedOutputError(f"Model output is not JSON: {raw[:200]!r}") from e
    if not isinstance(data, dict):
        raise LLMMalformedOutputError(f"Model output is not a JSON object: {type(data).__name__}")
    return data


def parse_due_date(value: Any, tz: tzinfo | None = None) -> float | None:
    """
    "YYYY-MM-DD" -> 23:59 that day; ISO datetime -> that instant.
    Naive values are read in tz (process local time when tz is None).
    Anything else -> None.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()

    try:
        if len(s) == 10:
            d = date.fromisoformat(s)
            dt = datetime.combine(d, dtime(23, 59))
        else:
            dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable due date from model: %r", value)
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz) if tz is not None else dt.astimezone()
    return dt.timestamp()


def _parse_lead_minutes(data: dict[str, Any]) -> int | None:
    raw = data.get("remindMeInMinutes", data.get("remind_minutes"))
    factor = 1
    if raw is None and data.get("remindMeInHours") is not None:
        raw = data.get("remindMeInHours")
        factor = 60
    if raw is None or isinstance(raw, bool):
        return None
    try:
        minutes = int(round(float(raw) * factor))
    except (TypeError, ValueError, OverflowError):
        return None
    return minutes if 0 <= minutes <= MAX_REMIND_MINUTES else None


def _normalize_client(raw: Any, known_clients: Iterable[str]) -> str | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    client = raw.strip()
    for known in known_clients:
        if known.lower() == client.lower():
            return known
    return client


def sanitize_checklist(raw: Any) -> list[DraftChecklistItem]:
    """Keep non-blank items (strings or {"text": ...}), trimmed, with temp ids."""
    if not isinstance(raw, list):
        return []

    out: list[DraftChecklistItem] = []
    for item in raw:
        if item is None:
            continue
        if isinstance(item, str):
            text = item
        elif isinstance(item, dict):
            text = item.get("text") or ""
        else:
            continue
        text = str(text).strip()
        if not text:
            continue
        out.append(DraftChecklistItem(id=f"temp-{len(out)}", text=text, completed=False))
    return out


def sanitize_draft(
        data: dict[str, Any],
        message: str,
        *,
        known_clients: Iterable[str] = (),
        tz: tzinfo | None = None,
) -> TaskDraft:
    title = data.get("title")
    title = title.strip() if isinstance(title, str) else ""

    return TaskDraft(
        title=title or fallback_title(message),
        priority=Priority.coerce(data.get("priority")),
        client=_normalize_client(data.get("client"), known_clients),
        due_at=parse_due_date(data.get("dueDate", data.get("due_date")), tz),
        remind_minutes=_parse_lead_minutes(data),
        checklist=sanitize_checklist(data.get("checklist")),
    )


class MessageInterpreter:
    def __init__(
            self,
            llm: LLMClient | None,
            *,
            tz: tzinfo | None = None,
            clock: Callable[[], float] = time.time,
    ) -> None:
        self._llm = llm
        self._tz = tz
        self._clock = clock

    def _build_prompts(self, message: str, known_clients: list[str]) -> tuple[str, str]:
        system_prompt = TASK_PARSER_SYSTEM_PROMPT
        if known_clients:
            system_prompt += (
                f"\n\nExisting clients: {', '.join(known_clients)}. "
                "If the message mentions a client similar to one of these, use the existing name exactly."
            )
        today = datetime.fromtimestamp(self._clock(), self._tz).date().isoformat()
        user_prompt = f'Parse this message into a task: "{message}"\n\nToday\'s date is {today}'
        return system_prompt, user_prompt

    def interpret(self, message: str, known_clients: Iterable[str] = ()) -> TaskDraft:
        clients = [c for c in known_clients if c]

        if self._llm is None:
            logger.info("Task parse fallback (reason=unavailable): no LLM client")
            return fallback_draft(message)

        try:
            system_prompt, user_prompt = self._build_prompts(message, clients)
            raw = self._llm.complete(system_prompt, user_prompt)
            data = parse_model_output(raw)
            draft = sanitize_draft(data, message, known_clients=clients, tz=self._tz)
        except LLMRateLimitError as e:
            logger.warning("Task parse fallback (reason=rate_limited): %s", e)
            return fallback_draft(message)
        except LLMUnavailableError as e:
            logger.info("Task parse fallback (reason=unavailable): %s", e)
            return fallback_draft(message)
        except LLMMalformedOutputError as e:
            logger.warning("Task parse fallback (reason=malformed): %s", e)
            return fallback_draft(message)
        except Exception:
            logger.exception("Task parse fallback (reason=error)")
            return fallback_draft(message)

        logger.debug(
            "Task parsed by LLM: title=%r priority=%s client=%r checklist=%d",
            draft.title,
            draft.priority.value,
            draft.client,
            len(draft.checklist),
        )
        return draft

    def summarize_tasks(self, tasks: list[Task]) -> str:
        """Short friendly summary of tasks; canned text on any failure."""
        if not tasks:
            return "No tasks to summarize."
        if self._llm is None:
            return DEFAULT_SUMMARY

        listing = "\n".join(
            f"- {t.title} ({t.priority.value} priority, {t.client or 'no client'})" for t in tasks
        )
        try:
            summary = self._llm.complete(
                TASK_SUMMARY_SYSTEM_PROMPT,
                f"Summarize these tasks in a brief, friendly message:\n{listing}",
            )
        except LLMRateLimitError as e:
            logger.warning("Task summary rate limit: %s", e)
            return DEFAULT_SUMMARY
        except Exception as e:
            logger.info("Task summary unavailable (%s)", e.__class__.__name__)
            return DEFAULT_SUMMARY

        summary = (summary or "").strip()
        return summary or DEFAULT_SUMMARY
