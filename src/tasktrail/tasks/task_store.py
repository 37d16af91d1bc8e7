# src/tasktrail/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterable
from dataclasses import asdict
from datetime import date, datetime
from pathlib import Path
from typing import Any

from .task_models import (
    ChecklistItem,
    FollowUp,
    Project,
    ProjectStatus,
    RecurrenceRule,
    RecurrenceType,
    Task,
    TaskDraft,
    TaskLinks,
    TaskPriority,
    TaskStatus,
    TimeEntry,
    format_date,
    format_ts,
    parse_date,
    parse_ts,
    utcnow,
)
from .task_query import FILTER_STATUSES, SORTABLE_COLUMNS, FilterClass, TaskQuery

logger = logging.getLogger(__name__)

_TASK_NUMBER_INT = "CAST(SUBSTR(task_number, 2) AS INTEGER)"
_TEXT_COLUMNS = frozenset({"title", "responsible", "task_type", "environment"})


def _new_id() -> str:
    return uuid.uuid4().hex


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _placeholders(values: Iterable[Any]) -> str:
    return ",".join("?" for _ in values)


class TaskStore:
    """
    SQLite store for tasks, projects, follow-ups and time entries.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Every query is scoped by owner (user_id). follow_ups.task_id and
    time_entries.task_id hold the task NUMBER, not the internal id.

    Thread-safety:
    - each method opens its own SQLite connection, so calls may run on
      executor threads concurrently
    """

    def __init__(self, db_path: str | Path = "tracker.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("TaskStore ready db=%s", self._db_path)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    task_number TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'Open',
                    priority TEXT NOT NULL DEFAULT 'Medium',
                    responsible TEXT NOT NULL DEFAULT '',
                    scope TEXT NOT NULL DEFAULT '[]',
                    task_type TEXT NOT NULL DEFAULT 'Development',
                    environment TEXT NOT NULL DEFAULT '',
                    project_id TEXT,
                    creation_date TEXT,
                    start_date TEXT,
                    due_date TEXT,
                    completion_date TEXT,
                    duration REAL,
                    dependencies TEXT NOT NULL DEFAULT '[]',
                    details TEXT NOT NULL DEFAULT '',
                    links TEXT NOT NULL DEFAULT '{}',
                    stakeholders TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # Migrations (safe): columns added after the first release.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column tasks.%s", name)

            add_col("planned_time_hours", "REAL")
            add_col("checklist", "TEXT NOT NULL DEFAULT '[]'")
            add_col("is_recurring", "INTEGER NOT NULL DEFAULT 0")
            add_col("recurrence_type", "TEXT")
            add_col("recurrence_interval", "INTEGER")
            add_col("recurrence_end_date", "TEXT")
            add_col("recurrence_days_of_week", "TEXT NOT NULL DEFAULT '[]'")
            add_col("parent_task_id", "TEXT")
            add_col("next_recurrence_date", "TEXT")

            cur.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_owner_number ON tasks(user_id, task_number)"
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner_status ON tasks(user_id, status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(user_id, parent_task_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(user_id, project_id)")

            # last number handed out per owner; never decreases, so deleted numbers are not reused
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS task_counters (
                    user_id TEXT PRIMARY KEY,
                    last_number INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    owner TEXT NOT NULL DEFAULT '',
                    team TEXT NOT NULL DEFAULT '[]',
                    scope TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'Active',
                    start_date TEXT,
                    end_date TEXT,
                    cost_center TEXT,
                    links TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_projects_owner_name ON projects(user_id, name)"
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS follow_ups (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    text TEXT NOT NULL,
                    task_status TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_follow_ups_task ON follow_ups(user_id, task_id)")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS time_entries (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    task_id TEXT NOT NULL,
                    task_title TEXT NOT NULL DEFAULT '',
                    project_name TEXT NOT NULL DEFAULT '',
                    responsible TEXT NOT NULL DEFAULT '',
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration INTEGER,
                    description TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_time_entries_task ON time_entries(user_id, task_id)"
            )

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _json_dump(value: Any, default: str) -> str:
        try:
            return json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("Failed to JSON-encode value; storing %s.", default)
            return default

    @staticmethod
    def _json_load(s: str | None, default: Any) -> Any:
        if not s:
            return default
        try:
            val = json.loads(s)
        except ValueError:
            return default
        return val if isinstance(val, type(default)) else default

    # ---- codecs ----

    @classmethod
    def _encode_task_fields(cls, fields: dict[str, Any]) -> dict[str, Any]:
        """Task attribute names -> column values."""
        out: dict[str, Any] = {}
        for name, value in fields.items():
            if name in ("scope", "dependencies", "stakeholders"):
                out[name] = cls._json_dump(list(value or []), "[]")
            elif name == "checklist":
                out[name] = cls._json_dump([asdict(item) for item in (value or [])], "[]")
            elif name == "links":
                out[name] = cls._json_dump((value or TaskLinks()).to_json_obj(), "{}")
            elif name in ("status", "priority"):
                out[name] = str(value)
            elif name in ("start_date", "due_date", "completion_date", "next_recurrence_date"):
                out[name] = format_date(value)
            elif name == "is_recurring":
                out[name] = 1 if value else 0
            elif name == "recurrence":
                rule: RecurrenceRule | None = value
                out["recurrence_type"] = str(rule.type) if rule else None
                out["recurrence_interval"] = int(rule.interval) if rule else None
                out["recurrence_end_date"] = format_date(rule.end_date) if rule else None
                out["recurrence_days_of_week"] = cls._json_dump(
                    list(rule.days_of_week) if rule else [], "[]"
                )
            else:
                out[name] = value
        return out

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        rule: RecurrenceRule | None = None
        if row["recurrence_type"]:
            try:
                rule = RecurrenceRule(
                    type=RecurrenceType(row["recurrence_type"]),
                    interval=max(1, int(row["recurrence_interval"] or 1)),
                    end_date=parse_date(row["recurrence_end_date"]),
                    days_of_week=tuple(
                        int(d) for d in self._json_load(row["recurrence_days_of_week"], [])
                    ),
                )
            except ValueError:
                logger.warning("Ignoring bad recurrence on task %s", row["task_number"])

        checklist = [
            ChecklistItem(
                id=str(item.get("id", "")),
                text=str(item.get("text", "")),
                completed=bool(item.get("completed", False)),
                timestamp=str(item.get("timestamp", "")),
            )
            for item in self._json_load(row["checklist"], [])
            if isinstance(item, dict)
        ]

        return Task(
            id=str(row["id"]),
            task_number=str(row["task_number"]),
            owner_id=str(row["user_id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            status=TaskStatus.from_db(row["status"]),
            priority=TaskPriority.from_db(row["priority"]),
            responsible=str(row["responsible"] or ""),
            scope=[str(s) for s in self._json_load(row["scope"], [])],
            task_type=str(row["task_type"] or ""),
            environment=str(row["environment"] or ""),
            project_id=row["project_id"],
            creation_date=parse_date(row["creation_date"]),
            start_date=parse_date(row["start_date"]),
            due_date=parse_date(row["due_date"]),
            completion_date=parse_date(row["completion_date"]),
            duration=row["duration"],
            planned_time_hours=row["planned_time_hours"],
            dependencies=[str(d) for d in self._json_load(row["dependencies"], [])],
            details=str(row["details"] or ""),
            stakeholders=[str(s) for s in self._json_load(row["stakeholders"], [])],
            checklist=checklist,
            links=TaskLinks.from_json_obj(self._json_load(row["links"], {})),
            is_recurring=bool(row["is_recurring"]),
            recurrence=rule,
            parent_task_id=row["parent_task_id"],
            next_recurrence_date=parse_date(row["next_recurrence_date"]),
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_follow_up(row: sqlite3.Row) -> FollowUp:
        return FollowUp(
            id=str(row["id"]),
            task_number=str(row["task_id"]),
            text=str(row["text"] or ""),
            created_at=parse_ts(row["created_at"]) or utcnow(),
            task_status=row["task_status"],
        )

    def _row_to_project(self, row: sqlite3.Row) -> Project:
        return Project(
            id=str(row["id"]),
            owner_id=str(row["user_id"]),
            name=str(row["name"]),
            description=str(row["description"] or ""),
            owner=str(row["owner"] or ""),
            team=[str(x) for x in self._json_load(row["team"], [])],
            scope=[str(x) for x in self._json_load(row["scope"], [])],
            status=ProjectStatus.from_db(row["status"]),
            start_date=parse_date(row["start_date"]),
            end_date=parse_date(row["end_date"]),
            cost_center=row["cost_center"],
            links=TaskLinks.from_json_obj(self._json_load(row["links"], {})),
            created_at=parse_ts(row["created_at"]),
            updated_at=parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_time_entry(row: sqlite3.Row) -> TimeEntry:
        return TimeEntry(
            id=str(row["id"]),
            owner_id=str(row["user_id"]),
            task_number=str(row["task_id"]),
            task_title=str(row["task_title"] or ""),
            project_name=str(row["project_name"] or ""),
            responsible=str(row["responsible"] or ""),
            start_time=parse_ts(row["start_time"]) or utcnow(),
            end_time=parse_ts(row["end_time"]),
            duration_minutes=row["duration"],
            description=str(row["description"] or ""),
            created_at=parse_ts(row["created_at"]),
        )

    # ---- task queries ----

    @staticmethod
    def _task_where(query: TaskQuery) -> tuple[str, list[Any]]:
        """
        WHERE clause for a TaskQuery.

        The single source of filter predicates: count_tasks() and
        select_tasks() both call this, so the two phases of a page load
        can never disagree.
        """
        clauses = ["user_id = ?"]
        params: list[Any] = [query.owner_id]

        if query.filter == FilterClass.CRITICAL:
            clauses.append("priority = ? AND status <> ?")
            params.extend([str(TaskPriority.CRITICAL), str(TaskStatus.COMPLETED)])
        elif query.filter != FilterClass.ALL:
            statuses = [str(s) for s in FILTER_STATUSES[query.filter]]
            clauses.append(f"status IN ({_placeholders(statuses)})")
            params.extend(statuses)

        if query.project_id:
            clauses.append("project_id = ?")
            params.append(query.project_id)

        if query.text is not None:
            pattern = _like_pattern(query.text)
            parts = [
                "title LIKE ? ESCAPE '\\'",
                "description LIKE ? ESCAPE '\\'",
                "responsible LIKE ? ESCAPE '\\'",
            ]
            params.extend([pattern, pattern, pattern])
            numbers = sorted(query.text_task_numbers)
            if numbers:
                parts.append(f"task_number IN ({_placeholders(numbers)})")
                params.extend(numbers)
            clauses.append("(" + " OR ".join(parts) + ")")

        return " AND ".join(clauses), params

    @staticmethod
    def _task_order(query: TaskQuery) -> str:
        direction = "DESC" if query.descending else "ASC"
        col = query.order_by if query.order_by in SORTABLE_COLUMNS else "due_date"
        if col == "task_number":
            return f"{_TASK_NUMBER_INT} {direction}"
        collate = " COLLATE NOCASE" if col in _TEXT_COLUMNS else ""
        # nulls last in both directions; task number keeps pages deterministic
        return f"{col} IS NULL, {col}{collate} {direction}, {_TASK_NUMBER_INT} ASC"

    def count_tasks(self, query: TaskQuery) -> int:
        where, params = self._task_where(query)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT COUNT(*) FROM tasks WHERE {where}", params)
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def select_tasks(self, query: TaskQuery) -> list[Task]:
        where, params = self._task_where(query)
        sql = f"SELECT * FROM tasks WHERE {where} ORDER BY {self._task_order(query)}"
        if query.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = [*params, int(query.limit), int(query.offset or 0)]
        elif query.offset:
            sql += " LIMIT -1 OFFSET ?"
            params = [*params, int(query.offset)]

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def get_task(
        self,
        owner_id: str,
        *,
        task_number: str | None = None,
        task_id: str | None = None,
    ) -> Task | None:
        if task_number is None and task_id is None:
            raise ValueError("task_number or task_id is required")
        col, key = ("task_number", task_number) if task_number is not None else ("id", task_id)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT * FROM tasks WHERE user_id = ? AND {col} = ?", (owner_id, key))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def list_series_members(self, owner_id: str, root_id: str) -> list[Task]:
        """{root} + {instances whose parent_task_id is root}."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE user_id = ?
                  AND (id = ? OR parent_task_id = ?)
                ORDER BY {_TASK_NUMBER_INT} ASC
                """,
                (owner_id, root_id, root_id),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_tasks_by_project(self, owner_id: str, project_id: str) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT * FROM tasks WHERE user_id = ? AND project_id = ? ORDER BY {_TASK_NUMBER_INT}",
                (owner_id, project_id),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_open_tasks_of_type_due(self, owner_id: str, task_type: str, until: date) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE user_id = ?
                  AND task_type = ?
                  AND due_date IS NOT NULL
                  AND due_date <= ?
                  AND status <> ?
                ORDER BY due_date ASC, {_TASK_NUMBER_INT} ASC
                """,
                (owner_id, task_type, until.isoformat(), str(TaskStatus.COMPLETED)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def search_tasks(self, owner_id: str, term: str, *, limit: int = 50) -> list[Task]:
        """Global search flavour: title/description/responsible/task number."""
        pattern = _like_pattern(term)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT *
                FROM tasks
                WHERE user_id = ?
                  AND (title LIKE ? ESCAPE '\\'
                    OR description LIKE ? ESCAPE '\\'
                    OR responsible LIKE ? ESCAPE '\\'
                    OR task_number LIKE ? ESCAPE '\\')
                ORDER BY {_TASK_NUMBER_INT} ASC
                LIMIT ?
                """,
                (owner_id, pattern, pattern, pattern, pattern, int(limit)),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    # ---- task writes ----

    def insert_tasks(self, owner_id: str, drafts: list[TaskDraft], *, now: datetime | None = None) -> list[Task]:
        """
        Insert tasks in one transaction, assigning ids and task numbers.

        Task numbers continue the owner's sequence (T1, T2, ...) from the
        task_counters row, so a deleted task's number is never handed out
        again. A draft that starts out Completed gets today's completion date.
        """
        if not drafts:
            return []
        now = now or utcnow()
        today = now.date()

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("SELECT last_number FROM task_counters WHERE user_id = ?", (owner_id,))
            row = cur.fetchone()
            counted = int(row["last_number"]) if row is not None else 0
            # tables written before task_counters existed only have their rows to go by
            cur.execute(
                f"SELECT COALESCE(MAX({_TASK_NUMBER_INT}), 0) FROM tasks WHERE user_id = ?",
                (owner_id,),
            )
            (highest,) = cur.fetchone()
            next_number = max(counted, int(highest or 0)) + 1

            ids: list[str] = []
            for draft in drafts:
                if not draft.title or not draft.title.strip():
                    raise ValueError("title is required")
                task_id = _new_id()
                fields = self._encode_task_fields(
                    {
                        "title": draft.title.strip(),
                        "description": draft.description,
                        "status": draft.status,
                        "priority": draft.priority,
                        "responsible": draft.responsible,
                        "scope": draft.scope,
                        "task_type": draft.task_type,
                        "environment": draft.environment,
                        "project_id": draft.project_id,
                        "start_date": draft.start_date,
                        "due_date": draft.due_date,
                        "completion_date": today if draft.status == TaskStatus.COMPLETED else None,
                        "duration": draft.duration,
                        "planned_time_hours": draft.planned_time_hours,
                        "dependencies": draft.dependencies,
                        "details": draft.details,
                        "stakeholders": draft.stakeholders,
                        "checklist": draft.checklist,
                        "links": draft.links,
                        "is_recurring": draft.is_recurring,
                        "recurrence": draft.recurrence,
                        "parent_task_id": draft.parent_task_id,
                    }
                )
                fields.update(
                    {
                        "id": task_id,
                        "task_number": f"T{next_number}",
                        "user_id": owner_id,
                        "creation_date": today.isoformat(),
                        "created_at": format_ts(now),
                        "updated_at": format_ts(now),
                    }
                )
                cols = list(fields)
                cur.execute(
                    f"INSERT INTO tasks({', '.join(cols)}) VALUES ({_placeholders(cols)})",
                    [fields[c] for c in cols],
                )
                ids.append(task_id)
                next_number += 1

            cur.execute(
                """
                INSERT INTO task_counters(user_id, last_number) VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET last_number = excluded.last_number
                """,
                (owner_id, next_number - 1),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        tasks = [self.get_task(owner_id, task_id=task_id) for task_id in ids]
        logger.debug("Inserted %d task(s) for owner=%s", len(ids), owner_id)
        return [t for t in tasks if t is not None]

    def update_tasks_fields(
        self,
        owner_id: str,
        task_ids: list[str],
        fields: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> int:
        """Apply the same field values to every listed task (one statement)."""
        ids = [str(x) for x in task_ids or [] if x]
        if not ids or not fields:
            return 0

        cols = self._encode_task_fields(fields)
        cols["updated_at"] = format_ts(now or utcnow())
        assignments = ", ".join(f"{c} = ?" for c in cols)
        params = [*cols.values(), owner_id, *ids]

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE tasks SET {assignments} WHERE user_id = ? AND id IN ({_placeholders(ids)})",
                params,
            )
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def delete_tasks(self, owner_id: str, task_ids: list[str]) -> int:
        ids = [str(x) for x in task_ids or [] if x]
        if not ids:
            return 0
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"DELETE FROM tasks WHERE user_id = ? AND id IN ({_placeholders(ids)})",
                [owner_id, *ids],
            )
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    # ---- follow-ups ----

    def fetch_follow_ups(self, owner_id: str, task_numbers: Iterable[str]) -> list[FollowUp]:
        """All follow-ups of the given tasks in one query, oldest first."""
        numbers = sorted({str(n) for n in task_numbers if n})
        if not numbers:
            return []
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT *
                FROM follow_ups
                WHERE user_id = ?
                  AND task_id IN ({_placeholders(numbers)})
                ORDER BY created_at ASC, rowid ASC
                """,
                [owner_id, *numbers],
            )
            return [self._row_to_follow_up(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def insert_follow_ups(self, owner_id: str, follow_ups: list[FollowUp]) -> int:
        if not follow_ups:
            return 0
        conn = self._get_conn()
        try:
            conn.executemany(
                """
                INSERT INTO follow_ups(id, user_id, task_id, text, task_status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (fu.id, owner_id, fu.task_number, fu.text, fu.task_status, format_ts(fu.created_at))
                    for fu in follow_ups
                ],
            )
            conn.commit()
            return len(follow_ups)
        finally:
            conn.close()

    def get_follow_up(self, owner_id: str, follow_up_id: str) -> FollowUp | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM follow_ups WHERE user_id = ? AND id = ?",
                (owner_id, follow_up_id),
            )
            row = cur.fetchone()
            return self._row_to_follow_up(row) if row else None
        finally:
            conn.close()

    def update_follow_up(
        self,
        owner_id: str,
        follow_up_id: str,
        *,
        text: str | None = None,
        created_at: datetime | None = None,
    ) -> int:
        fields: list[str] = []
        params: list[Any] = []
        if text is not None:
            fields.append("text = ?")
            params.append(text)
        if created_at is not None:
            fields.append("created_at = ?")
            params.append(format_ts(created_at))
        if not fields:
            return 0
        params.extend([owner_id, follow_up_id])

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"UPDATE follow_ups SET {', '.join(fields)} WHERE user_id = ? AND id = ?", params)
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def delete_follow_up(self, owner_id: str, follow_up_id: str) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM follow_ups WHERE user_id = ? AND id = ?", (owner_id, follow_up_id))
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def delete_follow_ups_for_tasks(self, owner_id: str, task_numbers: Iterable[str]) -> list[str]:
        """Delete every follow-up of the given tasks; returns the removed ids."""
        numbers = sorted({str(n) for n in task_numbers if n})
        if not numbers:
            return []
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT id FROM follow_ups WHERE user_id = ? AND task_id IN ({_placeholders(numbers)})",
                [owner_id, *numbers],
            )
            ids = [str(r["id"]) for r in cur.fetchall()]
            if ids:
                cur.execute(
                    f"DELETE FROM follow_ups WHERE user_id = ? AND id IN ({_placeholders(ids)})",
                    [owner_id, *ids],
                )
            conn.commit()
            return ids
        finally:
            conn.close()

    def follow_up_task_numbers_matching(self, owner_id: str, term: str) -> set[str]:
        pattern = _like_pattern(term)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT DISTINCT task_id FROM follow_ups WHERE user_id = ? AND text LIKE ? ESCAPE '\\'",
                (owner_id, pattern),
            )
            return {str(r["task_id"]) for r in cur.fetchall()}
        finally:
            conn.close()

    def search_follow_ups(self, owner_id: str, term: str, *, limit: int = 50) -> list[FollowUp]:
        pattern = _like_pattern(term)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM follow_ups
                WHERE user_id = ?
                  AND (text LIKE ? ESCAPE '\\' OR task_id LIKE ? ESCAPE '\\')
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (owner_id, pattern, pattern, int(limit)),
            )
            return [self._row_to_follow_up(r) for r in cur.fetchall()]
        finally:
            conn.close()

    # ---- projects ----

    def fetch_project_names(self, owner_id: str, project_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted({str(x) for x in project_ids if x})
        if not ids:
            return {}
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT id, name FROM projects WHERE user_id = ? AND id IN ({_placeholders(ids)})",
                [owner_id, *ids],
            )
            return {str(r["id"]): str(r["name"]) for r in cur.fetchall()}
        finally:
            conn.close()

    def get_project(
        self,
        owner_id: str,
        *,
        project_id: str | None = None,
        name: str | None = None,
    ) -> Project | None:
        if project_id is None and name is None:
            raise ValueError("project_id or name is required")
        col, key = ("id", project_id) if project_id is not None else ("name", name)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT * FROM projects WHERE user_id = ? AND {col} = ?", (owner_id, key))
            row = cur.fetchone()
            return self._row_to_project(row) if row else None
        finally:
            conn.close()

    def list_projects(self, owner_id: str) -> list[Project]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM projects WHERE user_id = ? ORDER BY created_at DESC, name ASC",
                (owner_id,),
            )
            return [self._row_to_project(r) for r in cur.fetchall()]
        finally:
            conn.close()

    @classmethod
    def _encode_project_fields(cls, fields: dict[str, Any]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name, value in fields.items():
            if name in ("team", "scope"):
                out[name] = cls._json_dump(list(value or []), "[]")
            elif name == "links":
                out[name] = cls._json_dump((value or TaskLinks()).to_json_obj(), "{}")
            elif name == "status":
                out[name] = str(value)
            elif name in ("start_date", "end_date"):
                out[name] = format_date(value)
            else:
                out[name] = value
        return out

    def insert_project(
        self,
        owner_id: str,
        name: str,
        fields: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> Project:
        if not name or not name.strip():
            raise ValueError("name is required")
        now = now or utcnow()
        project_id = _new_id()
        cols = self._encode_project_fields(dict(fields or {}))
        cols.update(
            {
                "id": project_id,
                "user_id": owner_id,
                "name": name.strip(),
                "created_at": format_ts(now),
                "updated_at": format_ts(now),
            }
        )
        names = list(cols)
        conn = self._get_conn()
        try:
            conn.execute(
                f"INSERT INTO projects({', '.join(names)}) VALUES ({_placeholders(names)})",
                [cols[c] for c in names],
            )
            conn.commit()
        finally:
            conn.close()

        project = self.get_project(owner_id, project_id=project_id)
        if project is None:
            raise RuntimeError("SQLite lost a freshly inserted project")
        return project

    def update_project_fields(
        self,
        owner_id: str,
        project_id: str,
        fields: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> int:
        if not fields:
            return 0
        cols = self._encode_project_fields(fields)
        cols["updated_at"] = format_ts(now or utcnow())
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE projects SET {', '.join(f'{c} = ?' for c in cols)} WHERE user_id = ? AND id = ?",
                [*cols.values(), owner_id, project_id],
            )
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def delete_project(self, owner_id: str, project_id: str) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM projects WHERE user_id = ? AND id = ?", (owner_id, project_id))
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def search_projects(self, owner_id: str, term: str, *, limit: int = 50) -> list[Project]:
        pattern = _like_pattern(term)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM projects
                WHERE user_id = ?
                  AND (name LIKE ? ESCAPE '\\'
                    OR description LIKE ? ESCAPE '\\'
                    OR owner LIKE ? ESCAPE '\\')
                ORDER BY name ASC
                LIMIT ?
                """,
                (owner_id, pattern, pattern, pattern, int(limit)),
            )
            return [self._row_to_project(r) for r in cur.fetchall()]
        finally:
            conn.close()

    # ---- time entries ----

    def insert_time_entry(self, entry: TimeEntry) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO time_entries(
                    id, user_id, task_id, task_title, project_name, responsible,
                    start_time, end_time, duration, description, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.owner_id,
                    entry.task_number,
                    entry.task_title,
                    entry.project_name,
                    entry.responsible,
                    format_ts(entry.start_time),
                    format_ts(entry.end_time),
                    entry.duration_minutes,
                    entry.description,
                    format_ts(entry.created_at or entry.start_time),
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def finish_time_entry(self, owner_id: str, entry_id: str, *, end_time: datetime, duration_minutes: int) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE time_entries
                SET end_time = ?, duration = ?
                WHERE user_id = ? AND id = ? AND end_time IS NULL
                """,
                (format_ts(end_time), int(duration_minutes), owner_id, entry_id),
            )
            conn.commit()
            return int(cur.rowcount)
        finally:
            conn.close()

    def delete_time_entries_for_tasks(self, owner_id: str, task_numbers: Iterable[str]) -> list[str]:
        """Delete every time entry of the given tasks; returns the removed ids."""
        numbers = sorted({str(n) for n in task_numbers if n})
        if not numbers:
            return []
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT id FROM time_entries WHERE user_id = ? AND task_id IN ({_placeholders(numbers)})",
                [owner_id, *numbers],
            )
            ids = [str(r["id"]) for r in cur.fetchall()]
            if ids:
                cur.execute(
                    f"DELETE FROM time_entries WHERE user_id = ? AND id IN ({_placeholders(ids)})",
                    [owner_id, *ids],
                )
            conn.commit()
            return ids
        finally:
            conn.close()

    def list_time_entries(
        self,
        owner_id: str,
        *,
        task_numbers: Iterable[str] | None = None,
        running: bool | None = None,
    ) -> list[TimeEntry]:
        clauses = ["user_id = ?"]
        params: list[Any] = [owner_id]
        if task_numbers is not None:
            numbers = sorted({str(n) for n in task_numbers if n})
            if not numbers:
                return []
            clauses.append(f"task_id IN ({_placeholders(numbers)})")
            params.extend(numbers)
        if running is True:
            clauses.append("end_time IS NULL")
        elif running is False:
            clauses.append("end_time IS NOT NULL")

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT * FROM time_entries WHERE {' AND '.join(clauses)} ORDER BY start_time ASC, rowid ASC",
                params,
            )
            return [self._row_to_time_entry(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def search_time_entries(self, owner_id: str, term: str, *, limit: int = 50) -> list[TimeEntry]:
        pattern = _like_pattern(term)
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM time_entries
                WHERE user_id = ?
                  AND (task_title LIKE ? ESCAPE '\\'
                    OR project_name LIKE ? ESCAPE '\\'
                    OR responsible LIKE ? ESCAPE '\\'
                    OR task_id LIKE ? ESCAPE '\\'
                    OR description LIKE ? ESCAPE '\\')
                ORDER BY start_time DESC
                LIMIT ?
                """,
                (owner_id, pattern, pattern, pattern, pattern, pattern, int(limit)),
            )
            return [self._row_to_time_entry(r) for r in cur.fetchall()]
        finally:
            conn.close()
