# src/tasktrail/sync/view_state.py

from __future__ import annotations

"""
Client-side view state.

ViewState keeps two layers:
- confirmed: what the backend last returned,
- pending: local edits awaiting write confirmation, keyed by task id.
render() overlays pending edits on the confirmed rows.

A reload replaces the confirmed rows. Pending edits younger than the grace
window survive it (the local edit wins until the write is confirmed or
rejected); older ones are dropped in favour of backend data.

ActiveView ties a ViewState to the request currently on screen and discards
results of requests that are no longer active.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..tasks.task_models import Task
from .pagination import Page, PageRequest, PaginationController

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingEdit:
    task: Task
    applied_at: float


class ViewState:
    def __init__(self, *, grace_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._grace = max(0.0, float(grace_seconds))
        self._clock = clock
        self._confirmed: list[Task] = []
        self._pending: dict[str, PendingEdit] = {}

    @property
    def confirmed(self) -> list[Task]:
        return list(self._confirmed)

    @property
    def pending_ids(self) -> set[str]:
        return set(self._pending)

    def apply_local_edit(self, task: Task) -> None:
        self._pending[task.id] = PendingEdit(task=task, applied_at=self._clock())

    def confirm(self, task_id: str, task: Task | None = None) -> None:
        """The write succeeded: fold the edit (or the backend's version) into confirmed."""
        edit = self._pending.pop(task_id, None)
        final = task if task is not None else (edit.task if edit is not None else None)
        if final is None:
            return
        self._confirmed = [final if t.id == task_id else t for t in self._confirmed]

    def reject(self, task_id: str) -> None:
        """The write failed: drop the overlay, confirmed data is untouched."""
        if self._pending.pop(task_id, None) is not None:
            logger.info("Local edit rejected task_id=%s", task_id)

    def replace_confirmed(self, tasks: list[Task]) -> None:
        now = self._clock()
        self._confirmed = list(tasks)
        expired = [tid for tid, edit in self._pending.items() if now - edit.applied_at > self._grace]
        for tid in expired:
            del self._pending[tid]
        if expired:
            logger.debug("Reload discarded %d stale local edit(s)", len(expired))

    def render(self) -> list[Task]:
        if not self._pending:
            return list(self._confirmed)
        return [self._pending[t.id].task if t.id in self._pending else t for t in self._confirmed]


class ActiveView:
    def __init__(self, controller: PaginationController, state: ViewState) -> None:
        self._controller = controller
        self.state = state
        self._request: PageRequest | None = None
        self.page: Page | None = None

    @property
    def request(self) -> PageRequest | None:
        return self._request

    async def show(self, request: PageRequest) -> Page | None:
        """Make `request` active and load it. Returns None if superseded meanwhile."""
        self._request = request
        return await self._load(request)

    async def reload(self) -> Page | None:
        if self._request is None:
            return None
        return await self._load(self._request)

    async def _load(self, request: PageRequest) -> Page | None:
        page = await self._controller.fetch_page(request)
        if request != self._request:
            logger.debug("Discarding stale page for %s", request)
            return None
        self.page = page
        self.state.replace_confirmed(page.tasks)
        return page
