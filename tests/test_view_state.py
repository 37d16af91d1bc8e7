# tests/test_view_state.py

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from tasktrail.sync.pagination import Page, PageRequest
from tasktrail.sync.view_state import ActiveView, ViewState
from tasktrail.tasks.task_models import Task, TaskStatus

from .fakes import OWNER, ManualClock


def _task(tid: str, title: str = "t") -> Task:
    return Task(id=tid, task_number=f"T{tid}", owner_id=OWNER, title=title)


def test_render_overlays_pending_edits() -> None:
    view = ViewState()
    view.replace_confirmed([_task("1", "a"), _task("2", "b")])

    view.apply_local_edit(_task("2", "b (edited)"))

    assert [t.title for t in view.render()] == ["a", "b (edited)"]
    assert [t.title for t in view.confirmed] == ["a", "b"]


def test_reject_drops_overlay_and_confirm_commits_it() -> None:
    view = ViewState()
    view.replace_confirmed([_task("1", "a"), _task("2", "b")])

    view.apply_local_edit(_task("1", "a2"))
    view.reject("1")
    assert [t.title for t in view.render()] == ["a", "b"]

    view.apply_local_edit(_task("2", "b2"))
    view.confirm("2")
    assert view.pending_ids == set()
    assert [t.title for t in view.confirmed] == ["a", "b2"]


def test_reload_keeps_recent_edits_and_drops_stale_ones() -> None:
    clock = ManualClock()
    view = ViewState(grace_seconds=5.0, clock=clock)
    view.replace_confirmed([_task("1", "a"), _task("2", "b")])

    view.apply_local_edit(replace(_task("1", "a"), status=TaskStatus.COMPLETED))
    clock.advance(2)
    view.replace_confirmed([_task("1", "a"), _task("2", "b from server")])
    assert view.render()[0].status == TaskStatus.COMPLETED
    assert view.render()[1].title == "b from server"

    clock.advance(10)
    view.replace_confirmed([_task("1", "a"), _task("2", "b from server")])
    assert view.render()[0].status == TaskStatus.OPEN
    assert view.pending_ids == set()


class GatedController:
    """fetch_page blocks on a per-page gate so tests control completion order."""

    def __init__(self) -> None:
        self.gates: dict[int, asyncio.Event] = {}

    async def fetch_page(self, request: PageRequest) -> Page:
        gate = self.gates.get(request.page)
        if gate is not None:
            await gate.wait()
        return Page(
            tasks=[_task(str(request.page), f"page {request.page}")],
            total=2,
            page=request.page,
            page_size=1,
            page_count=2,
        )


@pytest.mark.asyncio
async def test_stale_page_results_are_discarded() -> None:
    controller = GatedController()
    controller.gates[1] = asyncio.Event()
    view = ActiveView(controller, ViewState())

    slow = asyncio.create_task(view.show(PageRequest(owner_id=OWNER, page=1, page_size=1)))
    await asyncio.sleep(0)
    fast = await view.show(PageRequest(owner_id=OWNER, page=2, page_size=1))

    controller.gates[1].set()
    stale = await slow

    assert stale is None
    assert fast is not None and fast.page == 2
    assert view.page.page == 2
    assert [t.title for t in view.state.render()] == ["page 2"]


@pytest.mark.asyncio
async def test_reload_without_active_request_is_noop() -> None:
    view = ActiveView(GatedController(), ViewState())
    assert await view.reload() is None
