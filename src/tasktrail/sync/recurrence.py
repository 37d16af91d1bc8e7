# src/tasktrail/sync/recurrence.py

from __future__ import annotations

"""
Recurring-task series.

A series is a root task (is_recurring=True, carries the rule) plus instance
tasks whose parent_task_id is the root's internal id. Instances never point
at other instances, so membership is always {root} + {parent_task_id = root}.

Series operations resolve the root from any member. Updates touch only
series-level fields; per-instance state (status, due date) is never
propagated.
"""

import asyncio
import calendar
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum
from itertools import takewhile
from typing import Any

from ..core.ports import TaskBackend
from ..tasks.task_models import (
    RecurrenceRule,
    RecurrenceType,
    Task,
    TaskDraft,
    TaskStatus,
    utcnow,
)
from .audit_trail import AuditTrail

logger = logging.getLogger(__name__)

# Fields an edit may push to every member of a series.
SERIES_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "environment",
        "task_type",
        "priority",
        "responsible",
        "description",
        "details",
        "planned_time_hours",
        "links",
    }
)

_AUDITED_SERIES_FIELDS = ("priority", "task_type")


class SeriesOutcome(StrEnum):
    DONE = "done"
    NOTHING_TO_DO = "nothing_to_do"
    NOT_IN_SERIES = "not_in_series"


@dataclass(frozen=True, slots=True)
class SeriesResult:
    outcome: SeriesOutcome
    root_id: str | None = None
    affected: int = 0


# ---- occurrence math ----


def _sunday_weekday(d: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (d.weekday() + 1) % 7


def _week_start(d: date) -> date:
    return d - timedelta(days=_sunday_weekday(d))


def _add_months(d: date, months: int, day: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def iter_occurrences(rule: RecurrenceRule, start: date) -> Iterator[date]:
    """
    Occurrence dates from `start` (inclusive), in order.

    Stops at rule.end_date when set; otherwise infinite.
    """
    interval = max(1, int(rule.interval or 1))
    days = sorted({d for d in rule.days_of_week if 0 <= d <= 6})

    def gen() -> Iterator[date]:
        if rule.type == RecurrenceType.DAILY:
            current = start
            while True:
                yield current
                current += timedelta(days=interval)

        elif rule.type == RecurrenceType.WEEKLY and days:
            first_week = _week_start(start)
            current = start
            while True:
                weeks = (_week_start(current) - first_week).days // 7
                if weeks % interval == 0 and _sunday_weekday(current) in days:
                    yield current
                current += timedelta(days=1)

        elif rule.type == RecurrenceType.WEEKLY:
            current = start
            while True:
                yield current
                current += timedelta(weeks=interval)

        else:
            # monthly, anchored on the start day and clamped to month end
            n = 0
            while True:
                yield _add_months(start, n * interval, start.day)
                n += 1

    for d in gen():
        if rule.end_date is not None and d > rule.end_date:
            return
        yield d


def occurrences(rule: RecurrenceRule, start: date, until: date) -> list[date]:
    return list(takewhile(lambda d: d <= until, iter_occurrences(rule, start)))


def next_occurrence_after(rule: RecurrenceRule, start: date, after: date) -> date | None:
    for d in iter_occurrences(rule, start):
        if d > after:
            return d
    return None


def resolve_series(task: Task) -> str | None:
    """Root id of the task's series, or None when the task is standalone."""
    if task.is_recurring:
        return task.id
    return task.parent_task_id or None


class RecurrenceManager:
    def __init__(self, backend: TaskBackend, audit: AuditTrail) -> None:
        self._backend = backend
        self._audit = audit

    resolve_series = staticmethod(resolve_series)

    async def series_members(self, owner_id: str, root_id: str) -> list[Task]:
        return await self._backend.list_series_members(owner_id, root_id)

    # ---- delete ----

    async def delete_series(self, owner_id: str, root_id: str) -> SeriesResult:
        """
        Delete the root and every instance.

        Follow-ups and time entries go first so a failure half-way never leaves
        orphaned rows behind deleted tasks.
        """
        members = await self.series_members(owner_id, root_id)
        if not members:
            logger.info("delete_series: nothing to delete root=%s", root_id)
            return SeriesResult(SeriesOutcome.NOTHING_TO_DO, root_id=root_id)

        await self._backend.delete_follow_ups_for_tasks(owner_id, [t.task_number for t in members])
        await self._backend.delete_time_entries_for_tasks(owner_id, [t.task_number for t in members])
        removed = await self._backend.delete_tasks(owner_id, [t.id for t in members])
        logger.info("Deleted series root=%s tasks=%d", root_id, removed)
        return SeriesResult(SeriesOutcome.DONE, root_id=root_id, affected=removed)

    async def delete_series_for(self, task: Task) -> SeriesResult:
        root_id = resolve_series(task)
        if root_id is None:
            return SeriesResult(SeriesOutcome.NOT_IN_SERIES)
        return await self.delete_series(task.owner_id, root_id)

    # ---- update ----

    async def update_series_fields(
            self,
            owner_id: str,
            root_id: str,
            fields: dict[str, Any],
            *,
            now: datetime | None = None,
    ) -> SeriesResult:
        """
        Apply series-level fields to every member in one bulk update.

        Anything outside SERIES_UPDATABLE_FIELDS (status, due dates, ...) is
        dropped. Priority and task type changes get audit entries per member.
        """
        now = now or utcnow()
        allowed = {k: v for k, v in fields.items() if k in SERIES_UPDATABLE_FIELDS}
        dropped = sorted(set(fields) - set(allowed))
        if dropped:
            logger.debug("update_series_fields: ignoring non-series fields %s", dropped)

        members = await self.series_members(owner_id, root_id)
        if not members or not allowed:
            return SeriesResult(SeriesOutcome.NOTHING_TO_DO, root_id=root_id)

        updated = await self._backend.update_tasks_fields(owner_id, [t.id for t in members], allowed, now=now)

        tracked = {k: allowed[k] for k in _AUDITED_SERIES_FIELDS if k in allowed}
        if tracked:
            recordings = []
            for member in members:
                entries = self._audit.plan(member, tracked, now).entries
                if entries:
                    recordings.append(self._audit.record(owner_id, member.task_number, entries))
            await asyncio.gather(*recordings)

        logger.info("Updated series root=%s tasks=%d fields=%s", root_id, updated, ",".join(sorted(allowed)))
        return SeriesResult(SeriesOutcome.DONE, root_id=root_id, affected=updated)

    async def update_series_for(self, task: Task, fields: dict[str, Any]) -> SeriesResult:
        root_id = resolve_series(task)
        if root_id is None:
            return SeriesResult(SeriesOutcome.NOT_IN_SERIES)
        return await self.update_series_fields(task.owner_id, root_id, fields)

    # ---- instance generation ----

    async def generate_instances(self, root: Task, until: date, *, now: datetime | None = None) -> list[Task]:
        """
        Create the missing instances of a series up to `until` (inclusive).

        The root counts as the occurrence on its own due date. Dates that
        already have an instance are skipped, so repeated calls are safe.
        The root's next_recurrence_date moves to the first occurrence after
        `until`.
        """
        if not root.is_recurring or root.recurrence is None:
            return []

        anchor = root.due_date or root.start_date or root.creation_date
        if anchor is None:
            logger.warning("generate_instances: series %s has no anchor date", root.task_number)
            return []

        members = await self.series_members(root.owner_id, root.id)
        taken = {t.due_date for t in members if t.due_date is not None}

        drafts = [
            TaskDraft(
                title=root.title,
                description=root.description,
                status=TaskStatus.OPEN,
                priority=root.priority,
                responsible=root.responsible,
                scope=list(root.scope),
                task_type=root.task_type,
                environment=root.environment,
                project_id=root.project_id,
                due_date=d,
                planned_time_hours=root.planned_time_hours,
                details=root.details,
                stakeholders=list(root.stakeholders),
                links=root.links,
                parent_task_id=root.id,
            )
            for d in occurrences(root.recurrence, anchor, until)
            if d not in taken
        ]

        created = await self._backend.insert_tasks(root.owner_id, drafts, now=now) if drafts else []

        next_date = next_occurrence_after(root.recurrence, anchor, until)
        if next_date != root.next_recurrence_date:
            await self._backend.update_tasks_fields(
                root.owner_id, [root.id], {"next_recurrence_date": next_date}, now=now
            )

        logger.info("Series %s: generated %d instance(s) up to %s", root.task_number, len(created), until)
        return created
