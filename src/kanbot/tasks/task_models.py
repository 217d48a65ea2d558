# src/kanbot/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum, StrEnum
from typing import Any, Final


class Priority(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def coerce(cls, raw: Any) -> Priority:
        """Map anything that is not an exact priority name to MEDIUM."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            return cls.MEDIUM
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.MEDIUM


class _Unset(Enum):
    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Final = _Unset.UNSET

# One year. Longer lead times are rejected by the store and dropped by the interpreter.
MAX_REMIND_MINUTES: Final = 525_600


class StageNotEmptyError(ValueError):
    """Raised when deleting a stage that still has tasks assigned."""


class StageNotFoundError(LookupError):
    pass


class TaskNotFoundError(LookupError):
    pass


@dataclass(slots=True)
class ChecklistItem:
    id: str
    text: str
    completed: bool = False


@dataclass(slots=True)
class Stage:
    id: str
    name: str
    order: int
    color: str


@dataclass(slots=True)
class Task:
    id: str
    title: str
    client: str
    priority: Priority
    stage_id: str
    due_at: float | None
    remind_minutes: int | None
    reminder_sent: bool
    order: int
    created_at: float
    updated_at: float
    checklist: list[ChecklistItem] = field(default_factory=list)


@dataclass(slots=True)
class DraftChecklistItem:
    id: str
    text: str
    completed: bool = False


@dataclass(slots=True)
class TaskDraft:
    """Structured task produced by the message interpreter (or typed by hand)."""

    title: str
    priority: Priority = Priority.MEDIUM
    client: str | None = None
    due_at: float | None = None
    remind_minutes: int | None = None
    checklist: list[DraftChecklistItem] = field(default_factory=list)


@dataclass(slots=True)
class TaskPatch:
    """
    Partial task update.

    Every field defaults to UNSET ("leave as is"); None is a real value for
    the nullable fields. Touching due_at or remind_minutes re-arms the
    reminder (reminder_sent -> False) unless reminder_sent is set in the
    same patch. A provided checklist replaces the stored one.
    """

    title: str | _Unset = UNSET
    client: str | _Unset = UNSET
    priority: Priority | _Unset = UNSET
    stage_id: str | _Unset = UNSET
    order: int | _Unset = UNSET
    due_at: float | None | _Unset = UNSET
    remind_minutes: int | None | _Unset = UNSET
    reminder_sent: bool | _Unset = UNSET
    checklist: list[DraftChecklistItem] | _Unset = UNSET

    def resets_reminder(self) -> bool:
        return self.due_at is not UNSET or self.remind_minutes is not UNSET

    def effective_reminder_sent(self) -> bool | _Unset:
        if self.reminder_sent is not UNSET:
            return self.reminder_sent
        if self.resets_reminder():
            return False
        return UNSET

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is UNSET for f in fields(self))


@dataclass(slots=True, frozen=True)
class TaskFilter:
    client: str | None = None
    priority: Priority | None = None
    stage_id: str | None = None
    search: str | None = None


@dataclass(slots=True)
class BotActivity:
    id: int
    timestamp: float
    user_request: str
    bot_action: str
    success: bool
    error: str | None = None
