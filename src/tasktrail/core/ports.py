# src/tasktrail/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the sync layer.

Sync components depend on these Protocols instead of the concrete SQLite
adapter. This keeps the backend swappable and lets tests wrap it (e.g. to
count round trips).
"""

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any, Protocol

from ..tasks.task_models import FollowUp, Project, Task, TaskDraft, TimeEntry
from ..tasks.task_query import TaskQuery


class TaskBackend(Protocol):
    """
    Async relational backend.

    Reads return model objects. Writes raise WriteError when rejected and
    publish one change notification per affected row when they succeed.
    """

    # Tasks
    async def count_tasks(self, query: TaskQuery) -> int: ...
    async def select_tasks(self, query: TaskQuery) -> list[Task]: ...
    async def get_task(
            self,
            owner_id: str,
            *,
            task_number: str | None = None,
            task_id: str | None = None,
    ) -> Task | None: ...
    async def list_series_members(self, owner_id: str, root_id: str) -> list[Task]: ...
    async def list_tasks_by_project(self, owner_id: str, project_id: str) -> list[Task]: ...
    async def list_open_tasks_of_type_due(self, owner_id: str, task_type: str, until: date) -> list[Task]: ...
    async def search_tasks(self, owner_id: str, term: str, *, limit: int = 50) -> list[Task]: ...

    async def insert_tasks(self, owner_id: str, drafts: list[TaskDraft], *, now: datetime | None = None) -> list[Task]: ...
    async def update_tasks_fields(
            self,
            owner_id: str,
            task_ids: list[str],
            fields: dict[str, Any],
            *,
            now: datetime | None = None,
    ) -> int: ...
    async def delete_tasks(self, owner_id: str, task_ids: list[str]) -> int: ...

    # Follow-ups
    async def fetch_follow_ups(self, owner_id: str, task_numbers: Iterable[str]) -> list[FollowUp]: ...
    async def get_follow_up(self, owner_id: str, follow_up_id: str) -> FollowUp | None: ...
    async def follow_up_task_numbers_matching(self, owner_id: str, term: str) -> set[str]: ...
    async def search_follow_ups(self, owner_id: str, term: str, *, limit: int = 50) -> list[FollowUp]: ...
    async def insert_follow_ups(self, owner_id: str, follow_ups: list[FollowUp]) -> int: ...
    async def update_follow_up(
            self,
            owner_id: str,
            follow_up_id: str,
            *,
            text: str | None = None,
            created_at: datetime | None = None,
    ) -> int: ...
    async def delete_follow_up(self, owner_id: str, follow_up_id: str) -> int: ...
    async def delete_follow_ups_for_tasks(self, owner_id: str, task_numbers: Iterable[str]) -> list[str]: ...

    # Projects
    async def fetch_project_names(self, owner_id: str, project_ids: Iterable[str]) -> dict[str, str]: ...
    async def get_project(
            self,
            owner_id: str,
            *,
            project_id: str | None = None,
            name: str | None = None,
    ) -> Project | None: ...
    async def list_projects(self, owner_id: str) -> list[Project]: ...
    async def search_projects(self, owner_id: str, term: str, *, limit: int = 50) -> list[Project]: ...
    async def insert_project(
            self,
            owner_id: str,
            name: str,
            fields: dict[str, Any] | None = None,
            *,
            now: datetime | None = None,
    ) -> Project: ...
    async def update_project_fields(
            self,
            owner_id: str,
            project_id: str,
            fields: dict[str, Any],
            *,
            now: datetime | None = None,
    ) -> int: ...
    async def delete_project(self, owner_id: str, project_id: str) -> int: ...

    # Time entries
    async def list_time_entries(
            self,
            owner_id: str,
            *,
            task_numbers: Iterable[str] | None = None,
            running: bool | None = None,
    ) -> list[TimeEntry]: ...
    async def search_time_entries(self, owner_id: str, term: str, *, limit: int = 50) -> list[TimeEntry]: ...
    async def insert_time_entry(self, entry: TimeEntry) -> None: ...
    async def finish_time_entry(
            self,
            owner_id: str,
            entry_id: str,
            *,
            end_time: datetime,
            duration_minutes: int,
    ) -> int: ...
    async def delete_time_entries_for_tasks(self, owner_id: str, task_numbers: Iterable[str]) -> list[str]: ...


class PageReloader(Protocol):
    """Anything the realtime listener can ask to re-fetch its data."""

    async def reload(self) -> Any: ...
