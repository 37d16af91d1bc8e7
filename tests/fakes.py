# tests/fakes.py

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from collections.abc import Callable
from datetime import date
from typing import Any

from tasktrail.tasks.task_models import TaskDraft, TaskPriority, TaskStatus
from tasktrail.tasks.task_store import TaskStore

OWNER = "u1"


class CountingBackend:
    """
    Transparent proxy over a real backend.

    - counts every awaited backend call by method name
    - can make chosen methods fail (to exercise degrade paths)
    """

    def __init__(self, inner: Any) -> None:
        self._inner = inner
        self.calls: Counter[str] = Counter()
        self.failing: set[str] = set()

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._inner, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            self.calls[name] += 1
            if name in self.failing:
                raise RuntimeError(f"{name} unavailable")
            return await attr(*args, **kwargs)

        return wrapper

    def reset(self) -> None:
        self.calls.clear()


class FakeReloader:
    """PageReloader that records calls and can be told to fail."""

    def __init__(self, *, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    async def reload(self) -> None:
        self.calls += 1
        if self.fail:
            raise RuntimeError("backend down")


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true (listener work happens on other tasks)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def seed_tasks(store: TaskStore, count: int, *, owner_id: str = OWNER, **fields: Any) -> list:
    """Insert `count` tasks with varied due dates and priorities."""
    priorities = list(TaskPriority)
    drafts = []
    for i in range(count):
        values: dict[str, Any] = {
            "title": f"Task {i}",
            "priority": priorities[i % len(priorities)],
            "status": TaskStatus.OPEN,
            # every 7th task has no due date; others collide on purpose
            "due_date": None if i % 7 == 0 else date(2024, 1, 1 + (i % 5)),
        }
        values.update(fields)
        drafts.append(TaskDraft(**values))
    return store.insert_tasks(owner_id, drafts)
