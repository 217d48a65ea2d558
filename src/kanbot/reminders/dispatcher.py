# src/kanbot/reminders/dispatcher.py

"""
Reminder dispatcher.

For each candidate, in scan order:
- build a ReminderNotice,
- post it through the injected messenger (bounded by a timeout),
- only after a successful post, latch the task via mark_reminder_sent.

A failed post leaves the task eligible, so the next scan retries it.
A crash between post and mark can produce one duplicate reminder after
restart; that is the accepted failure mode.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.ports import OutboundMessenger, TaskRepo
from ..tasks.task_models import Priority
from .scanner import ReminderCandidate

logger = logging.getLogger(__name__)

PRIORITY_BADGES: dict[Priority, str] = {
    Priority.HIGH: "\N{LARGE RED CIRCLE}",
    Priority.MEDIUM: "\N{LARGE YELLOW CIRCLE}",
    Priority.LOW: "\N{LARGE GREEN CIRCLE}",
}

# Due dates without an explicit time are stored at 23:59 local time.
END_OF_DAY = (23, 59)


def priority_badge(priority: Priority | str) -> str:
    return PRIORITY_BADGES[Priority.coerce(priority)]


def resolve_timezone(name: str | None) -> tzinfo | None:
    """ZoneInfo for name, or None (= process local time) when empty or unknown."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using local time", name)
        return None


def format_relative_time(minutes: int) -> str:
    """
    0 -> "now", 1 -> "in 1 minute", 45 -> "in 45 minutes",
    120 -> "in 2 hours", 90 -> "in 1h 30m".
    """
    minutes = max(0, int(minutes))
    if minutes == 0:
        return "now"
    if minutes < 60:
        return "in 1 minute" if minutes == 1 else f"in {minutes} minutes"

    hours, rest = divmod(minutes, 60)
    if rest == 0:
        return "in 1 hour" if hours == 1 else f"in {hours} hours"
    return f"in {hours}h {rest}m"


def format_due_clock(due_at: float, tz: tzinfo | None = None) -> str:
    """' at 3:05 PM' unless the due time is the end-of-day sentinel."""
    dt = datetime.fromtimestamp(due_at, tz) if tz is not None else datetime.fromtimestamp(due_at)
    if (dt.hour, dt.minute) == END_OF_DAY:
        return ""
    hour12 = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f" at {hour12}:{dt.minute:02d} {suffix}"


@dataclass(slots=True, frozen=True)
class ReminderNotice:
    """Transport-neutral reminder payload; connectors decide how to render it."""

    task_id: str
    header: str
    title: str
    fields: tuple[tuple[str, str], ...]
    due_line: str
    action_label: str
    action_url: str
    text: str

    def as_plain_text(self) -> str:
        lines = [self.header, self.title]
        lines.extend(f"{name}: {value}" for name, value in self.fields)
        lines.append(self.due_line)
        lines.append(f"{self.action_label}: {self.action_url}")
        return "\n".join(lines)


def build_reminder_notice(
    candidate: ReminderCandidate,
    *,
    public_url: str,
    tz: tzinfo | None = None,
) -> ReminderNotice:
    task = candidate.task
    when = format_relative_time(candidate.minutes_remaining)
    clock = format_due_clock(task.due_at, tz) if task.due_at is not None else ""
    priority = Priority.coerce(task.priority)

    return ReminderNotice(
        task_id=task.id,
        header="\N{BELL} Task Reminder",
        title=task.title,
        fields=(
            ("Client", task.client or "None"),
            ("Priority", f"{priority_badge(priority)} {priority.value}"),
        ),
        due_line=f"\N{CLOCK FACE ONE OCLOCK} Due {when}{clock}",
        action_label="View Task",
        action_url=f"{public_url.rstrip('/')}/?task={task.id}",
        text=f'Reminder: "{task.title}" is due {when}{clock}',
    )


@dataclass(slots=True)
class DispatchReport:
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    # Delivered but the latch could not be written: expect one repeat next cycle.
    unmarked: list[str] = field(default_factory=list)


class ReminderDispatcher:
    def __init__(
        self,
        task_store: TaskRepo,
        messenger: OutboundMessenger,
        *,
        target: str | None = None,
        public_url: str = "http://localhost:3000",
        tz: tzinfo | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._store = task_store
        self._messenger = messenger
        self._target = target
        self._public_url = public_url
        self._tz = tz
        self._timeout = max(0.1, float(timeout_seconds))

    async def dispatch(self, candidates: list[ReminderCandidate]) -> DispatchReport:
        report = DispatchReport()

        for candidate in candidates:
            task_id = candidate.task.id
            notice = build_reminder_notice(candidate, public_url=self._public_url, tz=self._tz)

            try:
                await asyncio.wait_for(
                    self._messenger.post_message(target=self._target, notice=notice),
                    timeout=self._timeout,
                )
            except TimeoutError:
                logger.warning("Reminder post timed out task_id=%s; will retry next cycle", task_id)
                report.failed.append(task_id)
                continue
            except Exception:
                logger.exception("Reminder post failed task_id=%s; will retry next cycle", task_id)
                report.failed.append(task_id)
                continue

            try:
                marked = await asyncio.wait_for(
                    asyncio.to_thread(self._store.mark_reminder_sent, task_id),
                    timeout=self._timeout,
                )
            except Exception:
                logger.exception("mark_reminder_sent failed task_id=%s", task_id)
                report.unmarked.append(task_id)
                continue

            if not marked:
                # Deleted between scan and mark; nothing left to latch.
                logger.info("Reminder sent but task %s no longer exists", task_id)
            else:
                logger.info("Reminder sent task_id=%s title=%r", task_id, candidate.task.title)
            report.sent.append(task_id)

        return report
