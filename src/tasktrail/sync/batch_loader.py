# src/tasktrail/sync/batch_loader.py

from __future__ import annotations

"""
Batch hydration of task rows.

A page of N task rows needs its follow-ups and project names. Fetching them
per row costs 2N round trips; hydrate() does it with at most two queries
regardless of N:
- follow_ups WHERE task_id IN (page task numbers)
- projects WHERE id IN (page project ids not already in the name cache)

Missing join targets are not errors: a task without follow-ups gets [], a
task whose project is gone gets "". A join query that fails outright is
logged and degrades the same way, so a page still renders.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import replace

from ..core.ports import TaskBackend
from ..tasks.task_models import FollowUp, Task
from .name_cache import NameCache

logger = logging.getLogger(__name__)


class BatchLoader:
    def __init__(self, backend: TaskBackend, names: NameCache | None = None) -> None:
        self._backend = backend
        self.names = names if names is not None else NameCache()

    async def hydrate(self, rows: list[Task]) -> list[Task]:
        """
        Attach follow-ups and project names to rows, preserving input order.

        Rows are expected to come from one owner-scoped query.
        """
        if not rows:
            return []

        owner_id = rows[0].owner_id
        numbers = [t.task_number for t in rows]
        missing = self.names.missing(t.project_id for t in rows)

        follow_ups, names = await asyncio.gather(
            self._load_follow_ups(owner_id, numbers),
            self._load_project_names(owner_id, missing),
        )
        self.names.merge(names)

        by_task: dict[str, list[FollowUp]] = defaultdict(list)
        for fu in follow_ups:
            by_task[fu.task_number].append(fu)

        return [
            replace(
                t,
                follow_ups=list(by_task.get(t.task_number, ())),
                project_name=self.names.get(t.project_id) or "",
            )
            for t in rows
        ]

    async def load_single(self, owner_id: str, task_number: str) -> Task | None:
        """
        Per-row path for deep links: one task fetch, one follow-up fetch and
        (on a cache miss) one project-name fetch. Not for list rendering.
        """
        task = await self._backend.get_task(owner_id, task_number=task_number)
        if task is None:
            return None

        follow_ups = await self._load_follow_ups(owner_id, [task.task_number])
        if task.project_id and task.project_id not in self.names:
            self.names.merge(await self._load_project_names(owner_id, {task.project_id}))

        return replace(
            task,
            follow_ups=follow_ups,
            project_name=self.names.get(task.project_id) or "",
        )

    async def _load_follow_ups(self, owner_id: str, numbers: list[str]) -> list[FollowUp]:
        if not numbers:
            return []
        try:
            return await self._backend.fetch_follow_ups(owner_id, numbers)
        except Exception:
            logger.exception("Follow-up batch query failed (%d tasks); rendering without follow-ups", len(numbers))
            return []

    async def _load_project_names(self, owner_id: str, project_ids: set[str]) -> dict[str, str]:
        if not project_ids:
            return {}
        try:
            return await self._backend.fetch_project_names(owner_id, sorted(project_ids))
        except Exception:
            logger.exception("Project name query failed (%d ids); rendering without names", len(project_ids))
            return {}
