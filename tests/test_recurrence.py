# tests/test_recurrence.py

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from tasktrail.sync.recurrence import (
    RecurrenceManager,
    SeriesOutcome,
    occurrences,
    resolve_series,
)
from tasktrail.tasks.task_models import (
    FollowUp,
    RecurrenceRule,
    RecurrenceType,
    Task,
    TaskDraft,
    TaskPriority,
    TaskStatus,
)
from tasktrail.tasks.task_query import TaskQuery
from tasktrail.tasks.task_store import TaskStore

from .fakes import OWNER

WEEKLY = RecurrenceRule(type=RecurrenceType.WEEKLY)


def _series(store: TaskStore, title: str, instances: int) -> tuple[Task, list[Task]]:
    (root,) = store.insert_tasks(
        OWNER,
        [TaskDraft(title=title, is_recurring=True, recurrence=WEEKLY, due_date=date(2024, 1, 1))],
    )
    children = store.insert_tasks(
        OWNER,
        [
            TaskDraft(title=title, parent_task_id=root.id, due_date=date(2024, 1, 8 + 7 * i))
            for i in range(instances)
        ],
    )
    return root, children


def _note(task: Task, text: str = "note") -> FollowUp:
    return FollowUp(
        id=f"fu-{task.task_number}",
        task_number=task.task_number,
        text=text,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
    )


def test_resolve_series_from_any_member(store: TaskStore) -> None:
    root, (i1, i2) = _series(store, "standup", 2)
    (lone,) = store.insert_tasks(OWNER, [TaskDraft(title="lone")])

    assert resolve_series(root) == root.id
    assert resolve_series(i2) == root.id
    assert resolve_series(lone) is None


@pytest.mark.asyncio
async def test_delete_series_from_instance_removes_exactly_the_series(
    store: TaskStore, recurrence: RecurrenceManager
) -> None:
    root, (i1, i2) = _series(store, "standup", 2)
    other_root, _ = _series(store, "retro", 1)
    (lone,) = store.insert_tasks(OWNER, [TaskDraft(title="lone")])
    store.insert_follow_ups(OWNER, [_note(root), _note(i2), _note(lone)])

    result = await recurrence.delete_series_for(i2)

    assert result.outcome == SeriesOutcome.DONE
    assert result.root_id == root.id
    assert result.affected == 3

    remaining = {t.title for t in store.select_tasks(TaskQuery(owner_id=OWNER))}
    assert remaining == {"retro", "lone"}
    assert len(store.list_series_members(OWNER, other_root.id)) == 2
    numbers = [root.task_number, i1.task_number, i2.task_number, lone.task_number]
    assert [fu.task_number for fu in store.fetch_follow_ups(OWNER, numbers)] == [lone.task_number]


@pytest.mark.asyncio
async def test_delete_series_outcomes(store: TaskStore, recurrence: RecurrenceManager) -> None:
    (lone,) = store.insert_tasks(OWNER, [TaskDraft(title="lone")])

    assert (await recurrence.delete_series_for(lone)).outcome == SeriesOutcome.NOT_IN_SERIES
    assert (await recurrence.delete_series(OWNER, "no-such-root")).outcome == SeriesOutcome.NOTHING_TO_DO
    assert store.get_task(OWNER, task_id=lone.id) is not None


@pytest.mark.asyncio
async def test_update_series_drops_per_instance_fields(store: TaskStore, recurrence: RecurrenceManager) -> None:
    root, (i1, i2) = _series(store, "standup", 2)
    store.update_tasks_fields(OWNER, [i1.id], {"status": TaskStatus.IN_PROGRESS})

    result = await recurrence.update_series_for(
        i1,
        {
            "title": "Daily standup",
            "priority": TaskPriority.HIGH,
            "status": TaskStatus.COMPLETED,
            "due_date": date(2030, 1, 1),
            "project_id": "p-x",
        },
    )
    assert result.outcome == SeriesOutcome.DONE
    assert result.affected == 3

    members = {t.id: t for t in store.list_series_members(OWNER, root.id)}
    assert {t.title for t in members.values()} == {"Daily standup"}
    assert {t.priority for t in members.values()} == {TaskPriority.HIGH}
    assert members[i1.id].status == TaskStatus.IN_PROGRESS
    assert members[root.id].status == TaskStatus.OPEN
    assert members[i2.id].due_date == i2.due_date
    assert all(t.project_id is None for t in members.values())

    notes = store.fetch_follow_ups(OWNER, [t.task_number for t in members.values()])
    assert sorted(fu.task_number for fu in notes) == sorted(t.task_number for t in members.values())
    assert {fu.text for fu in notes} == {'Priority changed from "Medium" to "High"'}


@pytest.mark.asyncio
async def test_update_series_with_only_excluded_fields_is_noop(
    store: TaskStore, recurrence: RecurrenceManager
) -> None:
    root, _ = _series(store, "standup", 1)
    result = await recurrence.update_series_fields(OWNER, root.id, {"status": TaskStatus.COMPLETED})
    assert result.outcome == SeriesOutcome.NOTHING_TO_DO
    assert {t.status for t in store.list_series_members(OWNER, root.id)} == {TaskStatus.OPEN}


@pytest.mark.asyncio
async def test_update_shrunken_series_still_succeeds(store: TaskStore, recurrence: RecurrenceManager) -> None:
    root, (i1, i2) = _series(store, "standup", 2)
    store.delete_tasks(OWNER, [i1.id])

    result = await recurrence.update_series_for(i2, {"responsible": "dana"})

    assert result.outcome == SeriesOutcome.DONE
    assert result.affected == 2


def test_daily_occurrences_honor_interval_and_end_date() -> None:
    rule = RecurrenceRule(type=RecurrenceType.DAILY, interval=2)
    assert occurrences(rule, date(2024, 1, 1), date(2024, 1, 7)) == [
        date(2024, 1, 1),
        date(2024, 1, 3),
        date(2024, 1, 5),
        date(2024, 1, 7),
    ]

    bounded = RecurrenceRule(type=RecurrenceType.DAILY, end_date=date(2024, 1, 3))
    assert occurrences(bounded, date(2024, 1, 1), date(2024, 1, 10)) == [
        date(2024, 1, 1),
        date(2024, 1, 2),
        date(2024, 1, 3),
    ]


def test_weekly_occurrences_on_selected_days_every_other_week() -> None:
    # 2024-01-01 is a Monday; days use 0=Sunday
    rule = RecurrenceRule(type=RecurrenceType.WEEKLY, interval=2, days_of_week=(1, 3))
    assert occurrences(rule, date(2024, 1, 1), date(2024, 1, 20)) == [
        date(2024, 1, 1),
        date(2024, 1, 3),
        date(2024, 1, 15),
        date(2024, 1, 17),
    ]


def test_monthly_occurrences_clamp_to_month_end() -> None:
    rule = RecurrenceRule(type=RecurrenceType.MONTHLY)
    assert occurrences(rule, date(2024, 1, 31), date(2024, 4, 30)) == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


@pytest.mark.asyncio
async def test_generate_instances_is_idempotent(store: TaskStore, recurrence: RecurrenceManager) -> None:
    (root,) = store.insert_tasks(
        OWNER,
        [
            TaskDraft(
                title="review",
                priority=TaskPriority.HIGH,
                is_recurring=True,
                recurrence=WEEKLY,
                due_date=date(2024, 1, 1),
            )
        ],
    )

    created = await recurrence.generate_instances(root, date(2024, 1, 22))
    assert [t.due_date for t in created] == [date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22)]
    assert all(t.parent_task_id == root.id and not t.is_recurring for t in created)
    assert all(t.status == TaskStatus.OPEN and t.priority == TaskPriority.HIGH for t in created)

    refreshed = store.get_task(OWNER, task_id=root.id)
    assert refreshed.next_recurrence_date == date(2024, 1, 29)

    assert await recurrence.generate_instances(refreshed, date(2024, 1, 22)) == []
    assert len(store.list_series_members(OWNER, root.id)) == 4
