# src/kanbot/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps connectors/storage/LLM providers swappable and makes testing easier.
"""

from typing import TYPE_CHECKING, Awaitable, Protocol

if TYPE_CHECKING:
    from ..reminders.dispatcher import ReminderNotice
    from ..tasks.task_models import (
        BotActivity,
        ChecklistItem,
        Stage,
        Task,
        TaskDraft,
        TaskFilter,
        TaskPatch,
    )


class LLMClient(Protocol):
    """
    Single-shot completion client.

    Implementations raise kanbot.llm.errors.LLMError subclasses on failure.
    """

    def complete(self, system_prompt: str, user_prompt: str) -> str: ...


class OutboundMessenger(Protocol):
    """
    Connector-side port: how services (reminder dispatcher, router replies) send outward.

    post_message must raise on delivery failure; returning normally means delivered.
    """

    def post_message(self, *, target: str | None, notice: ReminderNotice) -> Awaitable[None]: ...

    def send_text(
            self,
            *,
            text: str,
            room_id: str | None = None,
            to_user_id: str | None = None,
    ) -> Awaitable[None]: ...


class TaskRepo(Protocol):
    # Reminder API
    def list_tasks_needing_reminders(self, *, now_ts: float) -> list[Task]: ...
    def mark_reminder_sent(self, task_id: str) -> bool: ...

    # Bot API
    def create_task(self, draft: TaskDraft, *, stage_id: str = "todo") -> Task: ...
    def list_stages(self) -> list[Stage]: ...
    def list_client_names(self) -> list[str]: ...
    def list_tasks(self, filters: TaskFilter | None = None) -> list[Task]: ...
    def record_activity(
            self,
            *,
            user_request: str,
            bot_action: str,
            success: bool = True,
            error: str | None = None,
    ) -> int: ...

    # Board administration
    def get_task(self, task_id: str) -> Task | None: ...
    def update_task(self, task_id: str, patch: TaskPatch) -> Task: ...
    def delete_task(self, task_id: str) -> bool: ...
    def get_stage(self, stage_id: str) -> Stage | None: ...
    def create_stage(self, name: str, *, color: str | None = None) -> Stage: ...
    def delete_stage(self, stage_id: str) -> None: ...
    def update_stage(
            self,
            stage_id: str,
            *,
            name: str | None = None,
            color: str | None = None,
            order: int | None = None,
    ) -> Stage: ...
    def reorder_stages(self, stage_ids: list[str]) -> list[Stage]: ...
    def update_checklist_item(
            self,
            task_id: str,
            item_id: str,
            *,
            text: str | None = None,
            completed: bool | None = None,
    ) -> ChecklistItem: ...
    def delete_checklist_item(self, task_id: str, item_id: str) -> bool: ...
    def list_activity(self, *, limit: int = 50, offset: int = 0) -> list[BotActivity]: ...
