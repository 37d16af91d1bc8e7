# tests/test_search.py

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tasktrail.sync.search import GlobalSearch, SearchHitKind, relevance
from tasktrail.tasks.task_models import FollowUp, TaskDraft, TimeEntry
from tasktrail.tasks.task_store import TaskStore

from .fakes import OWNER, CountingBackend


def test_relevance_weights() -> None:
    # exact match in the first field: position 1.0 + exact 2.0 + word start 0.5
    assert relevance("bug", ["bug"]) == pytest.approx(3.5)
    # "a bug": position 1 - 2/5, plus word start
    assert relevance("bug", ["a bug"]) == pytest.approx(1.1)
    # second field weighs half; mid-word match gets no boundary bonus
    assert relevance("bug", [None, "debug"]) == pytest.approx(0.5 * (1 - 2 / 5))
    assert relevance("BUG", ["no match"]) == 0.0


@pytest.mark.asyncio
async def test_blank_term_runs_no_queries(counting: CountingBackend) -> None:
    results = await GlobalSearch(counting).search(OWNER, "   ")
    assert results.total == 0
    assert sum(counting.calls.values()) == 0


@pytest.mark.asyncio
async def test_search_spans_entities_and_ranks_hits(store: TaskStore, counting: CountingBackend) -> None:
    (task,) = store.insert_tasks(OWNER, [TaskDraft(title="Invoice", description="monthly invoice run")])
    store.insert_tasks(OWNER, [TaskDraft(title="Unrelated")])
    store.insert_project(OWNER, "Invoice automation")
    store.insert_follow_ups(
        OWNER,
        [FollowUp(id="n1", task_number=task.task_number, text="sent the invoice", created_at=datetime(2024, 1, 1, tzinfo=UTC))],
    )
    store.insert_time_entry(
        TimeEntry(
            id="e1",
            owner_id=OWNER,
            task_number=task.task_number,
            start_time=datetime(2024, 1, 1, tzinfo=UTC),
            task_title="Invoice",
            project_name="Finance",
            duration_minutes=30,
            end_time=datetime(2024, 1, 1, 0, 30, tzinfo=UTC),
        )
    )

    results = await GlobalSearch(counting).search(OWNER, "invoice")

    assert {h.kind for h in results.hits} == set(SearchHitKind)
    assert len(results.of_kind(SearchHitKind.TASK)) == 1
    scores = [h.relevance for h in results.hits]
    assert scores == sorted(scores, reverse=True)
    # title exact match plus a word-start match in the description
    assert results.hits[0].kind == SearchHitKind.TASK
    assert results.hits[0].relevance == pytest.approx(3.5 + 0.5 * (1 - 8 / 19) + 0.25)
