# src/tasktrail/tasks/backend.py

from __future__ import annotations

"""
Async adapter over TaskStore.

Every blocking SQLite call runs in the default executor so the event loop
keeps serving other work while a query is in flight. Writes:
- are converted into WriteError when the store rejects them,
- publish one ChangeEvent per affected row on success.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime
from functools import partial
from typing import Any, TypeVar

from ..errors import WriteError
from ..sync.realtime import ChangeBus, ChangeKind
from .task_models import FollowUp, Project, Task, TaskDraft, TimeEntry
from .task_query import TaskQuery
from .task_store import TaskStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncTaskBackend:
    def __init__(self, store: TaskStore, bus: ChangeBus | None = None) -> None:
        self._store = store
        self._bus = bus

    @property
    def store(self) -> TaskStore:
        return self._store

    # ---- plumbing ----

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    async def _write(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await self._call(fn, *args, **kwargs)
        except Exception as e:
            logger.error("Backend write failed op=%s: %s", operation, e)
            raise WriteError(operation, f"{operation} failed", original_error=e) from e

    def _publish(self, table: str, kind: ChangeKind, entity_ids: Iterable[str], owner_id: str) -> None:
        if self._bus is None:
            return
        self._bus.publish_many(table, kind, entity_ids, owner_id)

    # ---- tasks ----

    async def count_tasks(self, query: TaskQuery) -> int:
        return await self._call(self._store.count_tasks, query)

    async def select_tasks(self, query: TaskQuery) -> list[Task]:
        return await self._call(self._store.select_tasks, query)

    async def get_task(
            self,
            owner_id: str,
            *,
            task_number: str | None = None,
            task_id: str | None = None,
    ) -> Task | None:
        return await self._call(self._store.get_task, owner_id, task_number=task_number, task_id=task_id)

    async def list_series_members(self, owner_id: str, root_id: str) -> list[Task]:
        return await self._call(self._store.list_series_members, owner_id, root_id)

    async def list_tasks_by_project(self, owner_id: str, project_id: str) -> list[Task]:
        return await self._call(self._store.list_tasks_by_project, owner_id, project_id)

    async def list_open_tasks_of_type_due(self, owner_id: str, task_type: str, until: date) -> list[Task]:
        return await self._call(self._store.list_open_tasks_of_type_due, owner_id, task_type, until)

    async def search_tasks(self, owner_id: str, term: str, *, limit: int = 50) -> list[Task]:
        return await self._call(self._store.search_tasks, owner_id, term, limit=limit)

    async def insert_tasks(self, owner_id: str, drafts: list[TaskDraft], *, now: datetime | None = None) -> list[Task]:
        tasks = await self._write("insert_tasks", self._store.insert_tasks, owner_id, drafts, now=now)
        self._publish("tasks", ChangeKind.INSERT, [t.id for t in tasks], owner_id)
        return tasks

    async def update_tasks_fields(
            self,
            owner_id: str,
            task_ids: list[str],
            fields: dict[str, Any],
            *,
            now: datetime | None = None,
    ) -> int:
        n = await self._write("update_tasks", self._store.update_tasks_fields, owner_id, task_ids, fields, now=now)
        if n:
            self._publish("tasks", ChangeKind.UPDATE, task_ids, owner_id)
        return n

    async def delete_tasks(self, owner_id: str, task_ids: list[str]) -> int:
        n = await self._write("delete_tasks", self._store.delete_tasks, owner_id, task_ids)
        if n:
            self._publish("tasks", ChangeKind.DELETE, task_ids, owner_id)
        return n

    # ---- follow-ups ----

    async def fetch_follow_ups(self, owner_id: str, task_numbers: Iterable[str]) -> list[FollowUp]:
        return await self._call(self._store.fetch_follow_ups, owner_id, list(task_numbers))

    async def get_follow_up(self, owner_id: str, follow_up_id: str) -> FollowUp | None:
        return await self._call(self._store.get_follow_up, owner_id, follow_up_id)

    async def follow_up_task_numbers_matching(self, owner_id: str, term: str) -> set[str]:
        return await self._call(self._store.follow_up_task_numbers_matching, owner_id, term)

    async def search_follow_ups(self, owner_id: str, term: str, *, limit: int = 50) -> list[FollowUp]:
        return await self._call(self._store.search_follow_ups, owner_id, term, limit=limit)

    async def insert_follow_ups(self, owner_id: str, follow_ups: list[FollowUp]) -> int:
        n = await self._write("insert_follow_ups", self._store.insert_follow_ups, owner_id, follow_ups)
        self._publish("follow_ups", ChangeKind.INSERT, [fu.id for fu in follow_ups], owner_id)
        return n

    async def update_follow_up(
            self,
            owner_id: str,
            follow_up_id: str,
            *,
            text: str | None = None,
            created_at: datetime | None = None,
    ) -> int:
        n = await self._write(
            "update_follow_up",
            self._store.update_follow_up,
            owner_id,
            follow_up_id,
            text=text,
            created_at=created_at,
        )
        if n:
            self._publish("follow_ups", ChangeKind.UPDATE, [follow_up_id], owner_id)
        return n

    async def delete_follow_up(self, owner_id: str, follow_up_id: str) -> int:
        n = await self._write("delete_follow_up", self._store.delete_follow_up, owner_id, follow_up_id)
        if n:
            self._publish("follow_ups", ChangeKind.DELETE, [follow_up_id], owner_id)
        return n

    async def delete_follow_ups_for_tasks(self, owner_id: str, task_numbers: Iterable[str]) -> list[str]:
        ids = await self._write(
            "delete_follow_ups",
            self._store.delete_follow_ups_for_tasks,
            owner_id,
            list(task_numbers),
        )
        self._publish("follow_ups", ChangeKind.DELETE, ids, owner_id)
        return ids

    # ---- projects ----

    async def fetch_project_names(self, owner_id: str, project_ids: Iterable[str]) -> dict[str, str]:
        return await self._call(self._store.fetch_project_names, owner_id, list(project_ids))

    async def get_project(
            self,
            owner_id: str,
            *,
            project_id: str | None = None,
            name: str | None = None,
    ) -> Project | None:
        return await self._call(self._store.get_project, owner_id, project_id=project_id, name=name)

    async def list_projects(self, owner_id: str) -> list[Project]:
        return await self._call(self._store.list_projects, owner_id)

    async def search_projects(self, owner_id: str, term: str, *, limit: int = 50) -> list[Project]:
        return await self._call(self._store.search_projects, owner_id, term, limit=limit)

    async def insert_project(
            self,
            owner_id: str,
            name: str,
            fields: dict[str, Any] | None = None,
            *,
            now: datetime | None = None,
    ) -> Project:
        project = await self._write("insert_project", self._store.insert_project, owner_id, name, fields, now=now)
        self._publish("projects", ChangeKind.INSERT, [project.id], owner_id)
        return project

    async def update_project_fields(
            self,
            owner_id: str,
            project_id: str,
            fields: dict[str, Any],
            *,
            now: datetime | None = None,
    ) -> int:
        n = await self._write(
            "update_project",
            self._store.update_project_fields,
            owner_id,
            project_id,
            fields,
            now=now,
        )
        if n:
            self._publish("projects", ChangeKind.UPDATE, [project_id], owner_id)
        return n

    async def delete_project(self, owner_id: str, project_id: str) -> int:
        n = await self._write("delete_project", self._store.delete_project, owner_id, project_id)
        if n:
            self._publish("projects", ChangeKind.DELETE, [project_id], owner_id)
        return n

    # ---- time entries ----

    async def list_time_entries(
            self,
            owner_id: str,
            *,
            task_numbers: Iterable[str] | None = None,
            running: bool | None = None,
    ) -> list[TimeEntry]:
        numbers = list(task_numbers) if task_numbers is not None else None
        return await self._call(self._store.list_time_entries, owner_id, task_numbers=numbers, running=running)

    async def search_time_entries(self, owner_id: str, term: str, *, limit: int = 50) -> list[TimeEntry]:
        return await self._call(self._store.search_time_entries, owner_id, term, limit=limit)

    async def insert_time_entry(self, entry: TimeEntry) -> None:
        await self._write("insert_time_entry", self._store.insert_time_entry, entry)
        self._publish("time_entries", ChangeKind.INSERT, [entry.id], entry.owner_id)

    async def finish_time_entry(
            self,
            owner_id: str,
            entry_id: str,
            *,
            end_time: datetime,
            duration_minutes: int,
    ) -> int:
        n = await self._write(
            "finish_time_entry",
            self._store.finish_time_entry,
            owner_id,
            entry_id,
            end_time=end_time,
            duration_minutes=duration_minutes,
        )
        if n:
            self._publish("time_entries", ChangeKind.UPDATE, [entry_id], owner_id)
        return n

    async def delete_time_entries_for_tasks(self, owner_id: str, task_numbers: Iterable[str]) -> list[str]:
        ids = await self._write(
            "delete_time_entries",
            self._store.delete_time_entries_for_tasks,
            owner_id,
            list(task_numbers),
        )
        self._publish("time_entries", ChangeKind.DELETE, ids, owner_id)
        return ids
