# src/kanbot/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .task_models import (
    MAX_REMIND_MINUTES,
    UNSET,
    BotActivity,
    ChecklistItem,
    DraftChecklistItem,
    Priority,
    Stage,
    StageNotEmptyError,
    StageNotFoundError,
    Task,
    TaskDraft,
    TaskFilter,
    TaskNotFoundError,
    TaskPatch,
)

logger = logging.getLogger(__name__)

DEFAULT_STAGES: tuple[Stage, ...] = (
    Stage(id="todo", name="To Do", order=0, color="#6B7280"),
    Stage(id="in-progress", name="In Progress", order=1, color="#3B82F6"),
    Stage(id="complete", name="Complete", order=2, color="#10B981"),
)
DEFAULT_STAGE_COLOR = "#6B7280"


def _new_id() -> str:
    return uuid.uuid4().hex


def _check_remind_minutes(value: int | None) -> int | None:
    if value is None:
        return None
    minutes = int(value)
    if minutes < 0:
        raise ValueError("remind_minutes must be >= 0")
    if minutes > MAX_REMIND_MINUTES:
        raise ValueError(f"remind_minutes must be <= {MAX_REMIND_MINUTES}")
    return minutes


class TaskStore:
    """
    SQLite board store (stages, tasks, checklist items, bot activity).

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection, so every public call is
      a single transaction and can be run from worker threads.
    """

    def __init__(self, db_path: str | Path = "board.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA foreign_keys = ON")
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS stages (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    color TEXT NOT NULL DEFAULT '#6B7280'
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    client TEXT NOT NULL DEFAULT '',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    stage_id TEXT NOT NULL REFERENCES stages(id),
                    due_at REAL,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS checklist_items (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    text TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    position INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS bot_activity (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    user_request TEXT NOT NULL,
                    bot_action TEXT NOT NULL,
                    success INTEGER NOT NULL DEFAULT 1,
                    error TEXT
                )
                """
            )

            # Migrations (safe): reminder columns were added after the first release.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("remind_minutes", "INTEGER")
            add_col("reminder_sent", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_stage ON tasks(stage_id, sort_order)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_reminders "
                "ON tasks(reminder_sent, due_at)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_checklist_task ON checklist_items(task_id)")

            self._seed_default_stages(cur)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _seed_default_stages(cur: sqlite3.Cursor) -> None:
        cur.execute("SELECT COUNT(*) FROM stages")
        (n,) = cur.fetchone()
        if int(n) > 0:
            return
        cur.executemany(
            "INSERT OR IGNORE INTO stages(id, name, sort_order, color) VALUES (?, ?, ?, ?)",
            [(s.id, s.name, s.order, s.color) for s in DEFAULT_STAGES],
        )
        logger.info("TaskStore: seeded %d default stages", len(DEFAULT_STAGES))

    @staticmethod
    def _row_to_stage(row: sqlite3.Row) -> Stage:
        return Stage(
            id=str(row["id"]),
            name=str(row["name"] or ""),
            order=int(row["sort_order"] or 0),
            color=str(row["color"] or DEFAULT_STAGE_COLOR),
        )

    @staticmethod
    def _row_to_task(row: sqlite3.Row, checklist: list[ChecklistItem] | None = None) -> Task:
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            client=str(row["client"] or ""),
            priority=Priority.coerce(row["priority"]),
            stage_id=str(row["stage_id"]),
            due_at=float(row["due_at"]) if row["due_at"] is not None else None,
            remind_minutes=int(row["remind_minutes"]) if row["remind_minutes"] is not None else None,
            reminder_sent=bool(row["reminder_sent"]),
            order=int(row["sort_order"] or 0),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
            checklist=list(checklist or []),
        )

    @staticmethod
    def _load_checklists(conn: sqlite3.Connection, task_ids: list[str]) -> dict[str, list[ChecklistItem]]:
        out: dict[str, list[ChecklistItem]] = {tid: [] for tid in task_ids}
        if not task_ids:
            return out
        placeholders = ",".join("?" for _ in task_ids)
        cur = conn.execute(
            f"""
            SELECT id, task_id, text, completed
            FROM checklist_items
            WHERE task_id IN ({placeholders})
            ORDER BY position ASC, rowid ASC
            """,
            task_ids,
        )
        for row in cur.fetchall():
            out[str(row["task_id"])].append(
                ChecklistItem(id=str(row["id"]), text=str(row["text"]), completed=bool(row["completed"]))
            )
        return out

    def _tasks_from_rows(self, conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Task]:
        checklists = self._load_checklists(conn, [str(r["id"]) for r in rows])
        return [self._row_to_task(r, checklists.get(str(r["id"]))) for r in rows]

    @staticmethod
    def _insert_checklist(conn: sqlite3.Connection, task_id: str, items: Iterable[DraftChecklistItem]) -> None:
        rows: list[tuple[Any, ...]] = []
        for pos, item in enumerate(items):
            text = (item.text or "").strip()
            if not text:
                continue
            # Interpreter-assigned "temp-N" ids are placeholders, never persisted.
            item_id = item.id if item.id and not item.id.startswith("temp-") else _new_id()
            rows.append((item_id, task_id, text, int(bool(item.completed)), pos))
        if rows:
            conn.executemany(
                "INSERT INTO checklist_items(id, task_id, text, completed, position) VALUES (?, ?, ?, ?, ?)",
                rows,
            )

    @staticmethod
    def _stage_exists(conn: sqlite3.Connection, stage_id: str) -> bool:
        cur = conn.execute("SELECT 1 FROM stages WHERE id = ?", (stage_id,))
        return cur.fetchone() is not None

    # ---- stages ----

    def list_stages(self) -> list[Stage]:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT * FROM stages ORDER BY sort_order ASC, rowid ASC")
            return [self._row_to_stage(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_stage(self, stage_id: str) -> Stage | None:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT * FROM stages WHERE id = ?", (stage_id,))
            row = cur.fetchone()
            return self._row_to_stage(row) if row else None
        finally:
            conn.close()

    def create_stage(self, name: str, *, color: str | None = None) -> Stage:
        name = (name or "").strip() or "New Stage"
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT COALESCE(MAX(sort_order), -1) FROM stages")
            (max_order,) = cur.fetchone()
            stage = Stage(
                id=_new_id(),
                name=name,
                order=int(max_order) + 1,
                color=(color or DEFAULT_STAGE_COLOR),
            )
            conn.execute(
                "INSERT INTO stages(id, name, sort_order, color) VALUES (?, ?, ?, ?)",
                (stage.id, stage.name, stage.order, stage.color),
            )
            conn.commit()
            logger.debug("Stage created id=%s name=%s order=%s", stage.id, stage.name, stage.order)
            return stage
        finally:
            conn.close()

    def update_stage(
        self,
        stage_id: str,
        *,
        name: str | None = None,
        color: str | None = None,
        order: int | None = None,
    ) -> Stage:
        fields: list[str] = []
        params: list[Any] = []

        if name is not None:
            fields.append("name = ?")
            params.append(name.strip())
        if color is not None:
            fields.append("color = ?")
            params.append(color)
        if order is not None:
            fields.append("sort_order = ?")
            params.append(int(order))

        conn = self._get_conn()
        try:
            if fields:
                params.append(stage_id)
                cur = conn.execute(f"UPDATE stages SET {', '.join(fields)} WHERE id = ?", params)
                if cur.rowcount == 0:
                    raise StageNotFoundError(f"Stage not found: {stage_id}")
                conn.commit()
            row = conn.execute("SELECT * FROM stages WHERE id = ?", (stage_id,)).fetchone()
            if row is None:
                raise StageNotFoundError(f"Stage not found: {stage_id}")
            return self._row_to_stage(row)
        finally:
            conn.close()

    def delete_stage(self, stage_id: str) -> None:
        """
        Delete an empty stage.

        Raises StageNotEmptyError while any task references the stage and
        StageNotFoundError for an unknown id.
        """
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks WHERE stage_id = ?", (stage_id,)).fetchone()
            if int(n) > 0:
                raise StageNotEmptyError(
                    f"Cannot delete stage with tasks ({int(n)} assigned). Move or delete tasks first."
                )
            cur = conn.execute("DELETE FROM stages WHERE id = ?", (stage_id,))
            if cur.rowcount == 0:
                raise StageNotFoundError(f"Stage not found: {stage_id}")
            conn.commit()
            logger.debug("Stage deleted id=%s", stage_id)
        finally:
            conn.close()

    def reorder_stages(self, stage_ids: list[str]) -> list[Stage]:
        """Set each stage's order to its position in stage_ids."""
        conn = self._get_conn()
        try:
            for sid in stage_ids:
                if not self._stage_exists(conn, sid):
                    raise StageNotFoundError(f"Stage not found: {sid}")
            conn.executemany(
                "UPDATE stages SET sort_order = ? WHERE id = ?",
                [(i, sid) for i, sid in enumerate(stage_ids)],
            )
            conn.commit()
            cur = conn.execute("SELECT * FROM stages ORDER BY sort_order ASC, rowid ASC")
            return [self._row_to_stage(r) for r in cur.fetchall()]
        finally:
            conn.close()

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def create_task(self, draft: TaskDraft, *, stage_id: str = "todo") -> Task:
        title = (draft.title or "").strip() or "Untitled Task"
        remind_minutes = _check_remind_minutes(draft.remind_minutes)

        now = time.time()
        task_id = _new_id()

        conn = self._get_conn()
        try:
            if not self._stage_exists(conn, stage_id):
                self._seed_default_stages(conn.cursor())
                if not self._stage_exists(conn, stage_id):
                    raise StageNotFoundError(f"Stage not found: {stage_id}")

            (max_order,) = conn.execute(
                "SELECT COALESCE(MAX(sort_order), -1) FROM tasks WHERE stage_id = ?",
                (stage_id,),
            ).fetchone()

            conn.execute(
                """
                INSERT INTO tasks(
                    id, title, client, priority, stage_id, due_at,
                    remind_minutes, reminder_sent, sort_order, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    task_id,
                    title,
                    (draft.client or "").strip(),
                    Priority.coerce(draft.priority).value,
                    stage_id,
                    float(draft.due_at) if draft.due_at is not None else None,
                    remind_minutes,
                    int(max_order) + 1,
                    now,
                    now,
                ),
            )
            self._insert_checklist(conn, task_id, draft.checklist)
            conn.commit()

            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            task = self._tasks_from_rows(conn, [row])[0]
            logger.debug(
                "Task added id=%s stage=%s priority=%s due_at=%s remind_minutes=%s",
                task.id,
                task.stage_id,
                task.priority.value,
                task.due_at,
                task.remind_minutes,
            )
            return task
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                return None
            return self._tasks_from_rows(conn, [row])[0]
        finally:
            conn.close()

    def list_tasks(self, filters: TaskFilter | None = None) -> list[Task]:
        where: list[str] = []
        params: list[Any] = []

        if filters is not None:
            if filters.client:
                where.append("client = ? COLLATE NOCASE")
                params.append(filters.client)
            if filters.priority:
                where.append("priority = ?")
                params.append(Priority.coerce(filters.priority).value)
            if filters.stage_id:
                where.append("stage_id = ?")
                params.append(filters.stage_id)
            if filters.search:
                like = f"%{filters.search}%"
                where.append(
                    "(title LIKE ? OR EXISTS ("
                    "SELECT 1 FROM checklist_items ci WHERE ci.task_id = tasks.id AND ci.text LIKE ?))"
                )
                params.extend([like, like])

        sql = "SELECT * FROM tasks"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY sort_order ASC, created_at ASC"

        conn = self._get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
            return self._tasks_from_rows(conn, rows)
        finally:
            conn.close()

    def update_task(self, task_id: str, patch: TaskPatch) -> Task:
        """
        Apply a TaskPatch atomically and return the updated task.

        Changing due_at or remind_minutes re-arms the reminder
        (see TaskPatch.effective_reminder_sent).
        """
        fields: list[str] = []
        params: list[Any] = []

        if patch.title is not UNSET:
            fields.append("title = ?")
            params.append((patch.title or "").strip() or "Untitled Task")
        if patch.client is not UNSET:
            fields.append("client = ?")
            params.append((patch.client or "").strip())
        if patch.priority is not UNSET:
            fields.append("priority = ?")
            params.append(Priority.coerce(patch.priority).value)
        if patch.stage_id is not UNSET:
            fields.append("stage_id = ?")
            params.append(patch.stage_id)
        if patch.order is not UNSET:
            fields.append("sort_order = ?")
            params.append(int(patch.order))
        if patch.due_at is not UNSET:
            fields.append("due_at = ?")
            params.append(float(patch.due_at) if patch.due_at is not None else None)
        if patch.remind_minutes is not UNSET:
            fields.append("remind_minutes = ?")
            params.append(_check_remind_minutes(patch.remind_minutes))

        sent = patch.effective_reminder_sent()
        if sent is not UNSET:
            fields.append("reminder_sent = ?")
            params.append(int(bool(sent)))

        conn = self._get_conn()
        try:
            if conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone() is None:
                raise TaskNotFoundError(f"Task not found: {task_id}")

            if patch.stage_id is not UNSET and not self._stage_exists(conn, str(patch.stage_id)):
                raise StageNotFoundError(f"Stage not found: {patch.stage_id}")

            fields.append("updated_at = ?")
            params.append(time.time())
            params.append(task_id)
            conn.execute(f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?", params)

            if patch.checklist is not UNSET:
                conn.execute("DELETE FROM checklist_items WHERE task_id = ?", (task_id,))
                self._insert_checklist(conn, task_id, patch.checklist)

            conn.commit()
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._tasks_from_rows(conn, [row])[0]
        finally:
            conn.close()

    def delete_task(self, task_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def update_checklist_item(
        self,
        task_id: str,
        item_id: str,
        *,
        text: str | None = None,
        completed: bool | None = None,
    ) -> ChecklistItem:
        fields: list[str] = []
        params: list[Any] = []
        if text is not None:
            fields.append("text = ?")
            params.append(text.strip())
        if completed is not None:
            fields.append("completed = ?")
            params.append(int(bool(completed)))

        conn = self._get_conn()
        try:
            if conn.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone() is None:
                raise TaskNotFoundError(f"Task not found: {task_id}")
            select_item = "SELECT id, text, completed FROM checklist_items WHERE id = ? AND task_id = ?"
            if conn.execute(select_item, (item_id, task_id)).fetchone() is None:
                raise LookupError(f"Checklist item not found: {item_id}")
            if fields:
                params.extend([item_id, task_id])
                conn.execute(
                    f"UPDATE checklist_items SET {', '.join(fields)} WHERE id = ? AND task_id = ?",
                    params,
                )
                conn.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (time.time(), task_id))
                conn.commit()
            row = conn.execute(select_item, (item_id, task_id)).fetchone()
            return ChecklistItem(id=str(row["id"]), text=str(row["text"]), completed=bool(row["completed"]))
        finally:
            conn.close()

    def delete_checklist_item(self, task_id: str, item_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "DELETE FROM checklist_items WHERE id = ? AND task_id = ?",
                (item_id, task_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def list_client_names(self) -> list[str]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT DISTINCT client FROM tasks WHERE client != '' ORDER BY client ASC"
            )
            return [str(r["client"]) for r in cur.fetchall()]
        finally:
            conn.close()

    # ---- reminders ----

    def list_tasks_needing_reminders(self, *, now_ts: float) -> list[Task]:
        """
        Tasks whose reminder threshold has been crossed and not yet latched.

        A task qualifies if:
        - remind_minutes IS NOT NULL
        - reminder_sent = 0
        - due_at IS NOT NULL
        - due_at - remind_minutes * 60 <= now_ts
        """
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE remind_minutes IS NOT NULL
                  AND reminder_sent = 0
                  AND due_at IS NOT NULL
                  AND due_at - remind_minutes * 60 <= ?
                ORDER BY due_at ASC, created_at ASC
                """,
                (float(now_ts),),
            ).fetchall()
            return self._tasks_from_rows(conn, rows)
        finally:
            conn.close()

    def mark_reminder_sent(self, task_id: str) -> bool:
        """Latch the reminder. Returns False if the task no longer exists."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "UPDATE tasks SET reminder_sent = 1, updated_at = ? WHERE id = ?",
                (time.time(), task_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    # ---- bot activity ----

    def record_activity(
        self,
        *,
        user_request: str,
        bot_action: str,
        success: bool = True,
        error: str | None = None,
    ) -> int:
        if not user_request or not bot_action:
            raise ValueError("user_request and bot_action are required")
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                INSERT INTO bot_activity(timestamp, user_request, bot_action, success, error)
                VALUES (?, ?, ?, ?, ?)
                """,
                (time.time(), user_request, bot_action, int(bool(success)), error),
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for bot_activity insert")
            return int(rowid)
        finally:
            conn.close()

    def list_activity(self, *, limit: int = 50, offset: int = 0) -> list[BotActivity]:
        """Newest first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM bot_activity ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
                (int(limit), int(offset)),
            )
            return [
                BotActivity(
                    id=int(r["id"]),
                    timestamp=float(r["timestamp"]),
                    user_request=str(r["user_request"]),
                    bot_action=str(r["bot_action"]),
                    success=bool(r["success"]),
                    error=r["error"],
                )
                for r in cur.fetchall()
            ]
        finally:
            conn.close()
