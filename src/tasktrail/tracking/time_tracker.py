# src/tasktrail/tracking/time_tracker.py

from __future__ import annotations

"""
Time tracking on tasks.

At most one timer runs per owner: starting a timer stops every other running
entry first. Durations are whole minutes, rounded down.
"""

import logging
import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

from ..core.ports import TaskBackend
from ..errors import TaskNotFoundError
from ..sync.recurrence import RecurrenceManager, resolve_series
from ..tasks.task_models import Task, TimeEntry, utcnow

logger = logging.getLogger(__name__)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() // 60))


def entry_minutes(entry: TimeEntry, now: datetime | None = None) -> int:
    """Recorded duration, or elapsed time so far for a running entry."""
    if entry.is_running:
        return elapsed_minutes(entry.start_time, now or utcnow())
    if entry.duration_minutes is not None:
        return int(entry.duration_minutes)
    return elapsed_minutes(entry.start_time, entry.end_time or entry.start_time)


@dataclass(frozen=True, slots=True)
class TimeEntryFilters:
    date_from: date | None = None
    date_to: date | None = None
    month: int | None = None  # 1..12
    year: int | None = None
    task_number: str | None = None
    project_name: str | None = None
    responsible: str | None = None
    is_running: bool | None = None

    def matches(self, entry: TimeEntry) -> bool:
        day = entry.start_time.date()
        if self.date_from is not None and day < self.date_from:
            return False
        if self.date_to is not None and day > self.date_to:
            return False
        if self.month is not None and day.month != self.month:
            return False
        if self.year is not None and day.year != self.year:
            return False
        if self.task_number and entry.task_number != self.task_number:
            return False
        if self.project_name and entry.project_name != self.project_name:
            return False
        if self.responsible and entry.responsible != self.responsible:
            return False
        if self.is_running is not None and entry.is_running != self.is_running:
            return False
        return True


@dataclass(frozen=True, slots=True)
class TimeStats:
    total_minutes: int = 0
    entry_count: int = 0
    running_count: int = 0
    average_minutes: float = 0.0
    by_project: dict[str, int] = field(default_factory=dict)
    by_task: dict[str, int] = field(default_factory=dict)


def filter_entries(entries: Iterable[TimeEntry], filters: TimeEntryFilters) -> list[TimeEntry]:
    return [e for e in entries if filters.matches(e)]


def stats(entries: Iterable[TimeEntry], *, now: datetime | None = None) -> TimeStats:
    now = now or utcnow()
    total = 0
    count = 0
    running = 0
    by_project: dict[str, int] = defaultdict(int)
    by_task: dict[str, int] = defaultdict(int)
    for e in entries:
        minutes = entry_minutes(e, now)
        total += minutes
        count += 1
        running += 1 if e.is_running else 0
        by_project[e.project_name or ""] += minutes
        by_task[e.task_number] += minutes
    return TimeStats(
        total_minutes=total,
        entry_count=count,
        running_count=running,
        average_minutes=(total / count) if count else 0.0,
        by_project=dict(by_project),
        by_task=dict(by_task),
    )


class TimeTracker:
    def __init__(self, backend: TaskBackend, recurrence: RecurrenceManager) -> None:
        self._backend = backend
        self._recurrence = recurrence

    async def running_entries(self, owner_id: str) -> list[TimeEntry]:
        return await self._backend.list_time_entries(owner_id, running=True)

    async def start_timer(self, task: Task, *, now: datetime | None = None, description: str = "") -> TimeEntry:
        """
        Start timing `task`.

        Returns the already running entry when this task is being timed.
        """
        now = now or utcnow()
        running = await self.running_entries(task.owner_id)
        for entry in running:
            if entry.task_number == task.task_number:
                return entry

        for entry in running:
            await self._finish(entry, now)

        entry = TimeEntry(
            id=uuid.uuid4().hex,
            owner_id=task.owner_id,
            task_number=task.task_number,
            start_time=now,
            task_title=task.title,
            project_name=task.project_name,
            responsible=task.responsible,
            description=description,
            created_at=now,
        )
        await self._backend.insert_time_entry(entry)
        logger.info("Timer started task=%s", task.task_number)
        return entry

    async def stop_timer(self, owner_id: str, task_number: str, *, now: datetime | None = None) -> TimeEntry | None:
        """Stop the running entry of a task. None when nothing was running."""
        now = now or utcnow()
        running = await self._backend.list_time_entries(owner_id, task_numbers=[task_number], running=True)
        if not running:
            return None
        stopped = None
        for entry in running:
            stopped = await self._finish(entry, now)
        return stopped

    async def _finish(self, entry: TimeEntry, now: datetime) -> TimeEntry:
        minutes = elapsed_minutes(entry.start_time, now)
        await self._backend.finish_time_entry(entry.owner_id, entry.id, end_time=now, duration_minutes=minutes)
        logger.info("Timer stopped task=%s minutes=%d", entry.task_number, minutes)
        entry.end_time = now
        entry.duration_minutes = minutes
        return entry

    async def task_total_minutes(self, owner_id: str, task_number: str, *, now: datetime | None = None) -> int:
        entries = await self._backend.list_time_entries(owner_id, task_numbers=[task_number])
        return sum(entry_minutes(e, now) for e in entries)

    async def series_total_minutes(self, owner_id: str, task_number: str, *, now: datetime | None = None) -> int:
        """Time across the whole recurring series the task belongs to (or just the task)."""
        task = await self._backend.get_task(owner_id, task_number=task_number)
        if task is None:
            raise TaskNotFoundError(task_number)
        root_id = resolve_series(task)
        if root_id is None:
            numbers = [task.task_number]
        else:
            numbers = [t.task_number for t in await self._recurrence.series_members(owner_id, root_id)]
        entries = await self._backend.list_time_entries(owner_id, task_numbers=numbers)
        return sum(entry_minutes(e, now) for e in entries)

    async def filter_entries(self, owner_id: str, filters: TimeEntryFilters) -> list[TimeEntry]:
        entries = await self._backend.list_time_entries(
            owner_id,
            task_numbers=[filters.task_number] if filters.task_number else None,
            running=filters.is_running,
        )
        return filter_entries(entries, filters)

    stats = staticmethod(stats)
