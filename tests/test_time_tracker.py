# tests/test_time_tracker.py

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from tasktrail.errors import TaskNotFoundError
from tasktrail.sync.recurrence import RecurrenceManager
from tasktrail.tasks.task_models import RecurrenceRule, RecurrenceType, TaskDraft, TimeEntry
from tasktrail.tasks.task_store import TaskStore
from tasktrail.tracking.time_tracker import TimeEntryFilters, TimeTracker, stats

from .fakes import OWNER, CountingBackend

T0 = datetime(2024, 2, 1, 9, 0, tzinfo=UTC)


@pytest.fixture()
def tracker(counting: CountingBackend, recurrence: RecurrenceManager) -> TimeTracker:
    return TimeTracker(counting, recurrence)


@pytest.mark.asyncio
async def test_only_one_timer_runs(store: TaskStore, tracker: TimeTracker) -> None:
    a, b = store.insert_tasks(OWNER, [TaskDraft(title="a"), TaskDraft(title="b")])

    first = await tracker.start_timer(a, now=T0)
    again = await tracker.start_timer(a, now=T0 + timedelta(minutes=3))
    assert again.id == first.id

    await tracker.start_timer(b, now=T0 + timedelta(minutes=10, seconds=59))

    running = await tracker.running_entries(OWNER)
    assert [e.task_number for e in running] == [b.task_number]
    (stopped_a,) = store.list_time_entries(OWNER, task_numbers=[a.task_number])
    assert stopped_a.duration_minutes == 10


@pytest.mark.asyncio
async def test_stop_timer_records_whole_minutes(store: TaskStore, tracker: TimeTracker) -> None:
    (a,) = store.insert_tasks(OWNER, [TaskDraft(title="a")])
    await tracker.start_timer(a, now=T0)

    stopped = await tracker.stop_timer(OWNER, a.task_number, now=T0 + timedelta(minutes=25, seconds=59))

    assert stopped is not None
    assert stopped.duration_minutes == 25
    assert await tracker.stop_timer(OWNER, a.task_number) is None
    assert await tracker.task_total_minutes(OWNER, a.task_number) == 25


@pytest.mark.asyncio
async def test_series_total_covers_every_member(store: TaskStore, tracker: TimeTracker) -> None:
    (root,) = store.insert_tasks(
        OWNER,
        [TaskDraft(title="r", is_recurring=True, recurrence=RecurrenceRule(type=RecurrenceType.DAILY))],
    )
    i1, i2 = store.insert_tasks(
        OWNER,
        [TaskDraft(title="r", parent_task_id=root.id), TaskDraft(title="r", parent_task_id=root.id)],
    )
    (other,) = store.insert_tasks(OWNER, [TaskDraft(title="other")])

    for task, minutes in ((root, 30), (i1, 15), (other, 100)):
        await tracker.start_timer(task, now=T0)
        await tracker.stop_timer(OWNER, task.task_number, now=T0 + timedelta(minutes=minutes))

    assert await tracker.series_total_minutes(OWNER, i2.task_number) == 45
    assert await tracker.series_total_minutes(OWNER, other.task_number) == 100
    with pytest.raises(TaskNotFoundError):
        await tracker.series_total_minutes(OWNER, "T404")


def _entry(eid: str, task: str, start: datetime, minutes: int | None, project: str = "P") -> TimeEntry:
    return TimeEntry(
        id=eid,
        owner_id=OWNER,
        task_number=task,
        start_time=start,
        project_name=project,
        end_time=None if minutes is None else start + timedelta(minutes=minutes),
        duration_minutes=minutes,
    )


def test_filters_and_stats() -> None:
    entries = [
        _entry("1", "T1", datetime(2024, 1, 10, tzinfo=UTC), 30, "Alpha"),
        _entry("2", "T2", datetime(2024, 2, 3, tzinfo=UTC), 60, "Beta"),
        _entry("3", "T1", datetime(2024, 2, 20, tzinfo=UTC), 15, "Alpha"),
        _entry("4", "T3", datetime(2024, 2, 21, 8, 0, tzinfo=UTC), None, "Beta"),
    ]

    feb = [e.id for e in entries if TimeEntryFilters(month=2, year=2024).matches(e)]
    assert feb == ["2", "3", "4"]
    ranged = TimeEntryFilters(date_from=date(2024, 2, 1), date_to=date(2024, 2, 20), project_name="Alpha")
    assert [e.id for e in entries if ranged.matches(e)] == ["3"]
    assert [e.id for e in entries if TimeEntryFilters(is_running=True).matches(e)] == ["4"]

    summary = stats(entries, now=datetime(2024, 2, 21, 8, 20, tzinfo=UTC))
    assert summary.total_minutes == 125
    assert summary.entry_count == 4
    assert summary.running_count == 1
    assert summary.by_task == {"T1": 45, "T2": 60, "T3": 20}
    assert summary.by_project == {"Alpha": 45, "Beta": 80}


@pytest.mark.asyncio
async def test_filter_entries_reads_backend(store: TaskStore, tracker: TimeTracker) -> None:
    a, b = store.insert_tasks(OWNER, [TaskDraft(title="a"), TaskDraft(title="b")])
    await tracker.start_timer(a, now=T0)
    await tracker.start_timer(b, now=T0 + timedelta(minutes=5))

    done = await tracker.filter_entries(OWNER, TimeEntryFilters(is_running=False))
    assert [e.task_number for e in done] == [a.task_number]
    only_b = await tracker.filter_entries(OWNER, TimeEntryFilters(task_number=b.task_number))
    assert [e.is_running for e in only_b] == [True]
