# src/tasktrail/sync/pagination.py

from __future__ import annotations

"""
Two-phase paginated task loading and text search.

Browse mode:
- phase 1: exact count for the filter,
- phase 2: ordered window [offset, offset + page_size) for the same filter.
Both phases build their predicate from one TaskQuery, so the total and the
rows always describe the same set.

Search mode (non-blank search term):
- one follow-up text query yields matching task numbers,
- one task query: filter AND (text on title/description/responsible OR
  task number in that set),
- the whole match set is sorted and sliced in memory.

Priority sort is refined client-side: due date stays the primary key
(ascending, nulls last) and priority rank breaks ties. In browse mode the
refinement applies within each fetched page.
"""

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import date
from typing import TypeVar

from ..core.ports import TaskBackend
from ..tasks.task_models import Task
from ..tasks.task_query import (
    SORT_COLUMNS,
    FilterClass,
    SortDirection,
    SortField,
    TaskQuery,
)
from .batch_loader import BatchLoader

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 25


@dataclass(frozen=True, slots=True)
class PageRequest:
    owner_id: str
    filter: FilterClass = FilterClass.ALL
    project_id: str | None = None
    sort: SortField = SortField.DUE_DATE
    direction: SortDirection = SortDirection.ASC
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    search: str | None = None

    @property
    def search_term(self) -> str | None:
        term = (self.search or "").strip()
        return term or None

    def with_page(self, page: int) -> PageRequest:
        return replace(self, page=page)


@dataclass(frozen=True, slots=True)
class Page:
    tasks: list[Task] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    page_count: int = 0


def page_count(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total > 0 else 0


def sort_by_priority(tasks: list[Task], direction: SortDirection = SortDirection.DESC) -> list[Task]:
    """
    Due date ascending (nulls last) first, then priority rank.

    `direction` only flips the rank order: DESC puts Critical before Low
    among tasks due the same day. The sort is stable.
    """
    sign = -1 if direction == SortDirection.DESC else 1

    def key(t: Task) -> tuple[bool, date, int]:
        return (t.due_date is None, t.due_date or date.max, sign * t.priority.rank)

    return sorted(tasks, key=key)


class PaginationController:
    def __init__(self, backend: TaskBackend, loader: BatchLoader) -> None:
        self._backend = backend
        self._loader = loader

    @staticmethod
    def build_query(request: PageRequest, **overrides) -> TaskQuery:
        if request.sort == SortField.PRIORITY:
            # backend cannot order by rank; fetch by due date and refine
            order_by, descending = "due_date", False
        else:
            order_by = SORT_COLUMNS.get(request.sort, "due_date")
            descending = request.direction == SortDirection.DESC
        query = TaskQuery(
            owner_id=request.owner_id,
            filter=request.filter,
            project_id=request.project_id,
            order_by=order_by,
            descending=descending,
        )
        return replace(query, **overrides) if overrides else query

    async def fetch_page(self, request: PageRequest) -> Page:
        page = max(1, int(request.page))
        size = max(1, int(request.page_size))
        if request.search_term is not None:
            return await self._search_page(request, page, size)

        query = self.build_query(request)
        total, rows = await asyncio.gather(
            self._backend.count_tasks(query),
            self._backend.select_tasks(replace(query, offset=(page - 1) * size, limit=size)),
        )

        if request.sort == SortField.PRIORITY:
            rows = sort_by_priority(rows, request.direction)

        tasks = await self._loader.hydrate(rows)
        logger.debug(
            "Page %d/%d filter=%s sort=%s total=%d",
            page,
            page_count(total, size),
            request.filter,
            request.sort,
            total,
        )
        return Page(tasks=tasks, total=total, page=page, page_size=size, page_count=page_count(total, size))

    async def _search_page(self, request: PageRequest, page: int, size: int) -> Page:
        term = request.search_term or ""
        try:
            numbers = await self._backend.follow_up_task_numbers_matching(request.owner_id, term)
        except Exception:
            logger.exception("Follow-up text search failed; matching task fields only")
            numbers = set()

        query = self.build_query(request, text=term, text_task_numbers=frozenset(numbers))
        rows = await self._backend.select_tasks(query)
        if request.sort == SortField.PRIORITY:
            rows = sort_by_priority(rows, request.direction)

        total = len(rows)
        start = (page - 1) * size
        tasks = await self._loader.hydrate(rows[start:start + size])
        logger.debug("Search %r matched %d task(s)", term, total)
        return Page(tasks=tasks, total=total, page=page, page_size=size, page_count=page_count(total, size))

    async def count_by_filter(self, owner_id: str, *, project_id: str | None = None) -> dict[FilterClass, int]:
        """Counts for every filter class (summary cards)."""
        filters = list(FilterClass)
        counts = await asyncio.gather(
            *(self._backend.count_tasks(TaskQuery(owner_id=owner_id, filter=f, project_id=project_id)) for f in filters)
        )
        return dict(zip(filters, counts, strict=True))


class SearchDebouncer:
    """
    Coalesce bursts of calls: only the last call within `delay` seconds runs.

    Earlier callers are superseded and get None back.
    """

    def __init__(self, delay: float = 0.3) -> None:
        self._delay = max(0.0, float(delay))
        self._generation = 0

    async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T | None:
        self._generation += 1
        generation = self._generation
        await asyncio.sleep(self._delay)
        if generation != self._generation:
            return None
        return await fn(*args, **kwargs)
