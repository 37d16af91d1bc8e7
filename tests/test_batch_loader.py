# tests/test_batch_loader.py

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tasktrail.sync.batch_loader import BatchLoader
from tasktrail.sync.name_cache import NameCache
from tasktrail.tasks.task_models import FollowUp, TaskDraft
from tasktrail.tasks.task_query import TaskQuery
from tasktrail.tasks.task_store import TaskStore

from .fakes import OWNER, CountingBackend


def _seed(store: TaskStore, n: int) -> None:
    if n == 0:
        return
    p1 = store.insert_project(OWNER, "Alpha")
    p2 = store.insert_project(OWNER, "Beta")
    drafts = []
    for i in range(n):
        # a third of the tasks point at a project that no longer exists
        project_id = [p1.id, p2.id, "gone"][i % 3]
        drafts.append(TaskDraft(title=f"t{i}", project_id=project_id))
    tasks = store.insert_tasks(OWNER, drafts)

    ts = datetime(2024, 1, 1, tzinfo=UTC)
    follow_ups = []
    for i, task in enumerate(tasks):
        for j in range(i % 3):  # 0, 1 or 2 follow-ups per task
            follow_ups.append(
                FollowUp(
                    id=f"{task.task_number}-{j}",
                    task_number=task.task_number,
                    text=f"note {j}",
                    created_at=ts + timedelta(minutes=j),
                    task_status="Open",
                )
            )
    store.insert_follow_ups(OWNER, follow_ups)


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [0, 1, 50])
async def test_batch_equals_per_row_and_bounds_queries(n: int, store: TaskStore, counting: CountingBackend) -> None:
    _seed(store, n)
    rows = await counting.select_tasks(TaskQuery(owner_id=OWNER, order_by="task_number"))
    assert len(rows) == n

    counting.reset()
    batch = await BatchLoader(counting).hydrate(rows)

    assert counting.calls["fetch_follow_ups"] <= 1
    assert counting.calls["fetch_project_names"] <= 1
    if n == 0:
        assert sum(counting.calls.values()) == 0

    per_row = []
    for row in rows:
        per_row.append(await BatchLoader(counting, NameCache()).load_single(OWNER, row.task_number))

    assert batch == per_row
    assert [t.task_number for t in batch] == [t.task_number for t in rows]
    for task in batch:
        if task.project_id == "gone":
            assert task.project_name == ""
        else:
            assert task.project_name in {"Alpha", "Beta"}


@pytest.mark.asyncio
async def test_cached_names_skip_project_query(store: TaskStore, counting: CountingBackend) -> None:
    _seed(store, 6)
    rows = await counting.select_tasks(TaskQuery(owner_id=OWNER))
    loader = BatchLoader(counting)

    await loader.hydrate(rows)
    assert "gone" not in loader.names
    assert len(loader.names) == 2

    counting.reset()
    again = await loader.hydrate([r for r in rows if r.project_id != "gone"])
    assert counting.calls["fetch_project_names"] == 0
    assert counting.calls["fetch_follow_ups"] == 1
    assert {t.project_name for t in again} == {"Alpha", "Beta"}


@pytest.mark.asyncio
async def test_failed_join_queries_degrade_to_defaults(store: TaskStore, counting: CountingBackend) -> None:
    _seed(store, 6)
    rows = await counting.select_tasks(TaskQuery(owner_id=OWNER))
    counting.failing |= {"fetch_follow_ups", "fetch_project_names"}

    hydrated = await BatchLoader(counting).hydrate(rows)

    assert len(hydrated) == len(rows)
    assert all(t.follow_ups == [] and t.project_name == "" for t in hydrated)


@pytest.mark.asyncio
async def test_hydrate_does_not_mutate_input(store: TaskStore, counting: CountingBackend) -> None:
    _seed(store, 3)
    rows = await counting.select_tasks(TaskQuery(owner_id=OWNER))
    await BatchLoader(counting).hydrate(rows)
    assert all(r.project_name == "" and r.follow_ups == [] for r in rows)


@pytest.mark.asyncio
async def test_load_single_missing_task(counting: CountingBackend) -> None:
    assert await BatchLoader(counting).load_single(OWNER, "T404") is None
