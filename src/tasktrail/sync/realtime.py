# src/tasktrail/sync/realtime.py

from __future__ import annotations

"""
Realtime invalidation.

Two pieces:
- ChangeBus: an explicit publish/subscribe channel. The backend adapter
  publishes one ChangeEvent per inserted/updated/deleted row.
- RealtimeInvalidationListener: consumes its subscription and re-fetches the
  active view on every event. No incremental patching: a full reload is
  always correct, just not minimal.

Events are not debounced. A bulk write of N rows causes N reloads.
"""

import asyncio
import contextlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from ..core.ports import PageReloader
from .name_cache import NameCache

logger = logging.getLogger(__name__)


class ChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    table: str  # "tasks" | "projects" | "follow_ups" | "time_entries"
    kind: ChangeKind
    entity_id: str
    owner_id: str


class Subscription:
    """One consumer's queue on the bus, scoped to an owner and a set of tables."""

    def __init__(self, bus: ChangeBus, owner_id: str, tables: frozenset[str] | None) -> None:
        self._bus = bus
        self.owner_id = owner_id
        self.tables = tables
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()

    def wants(self, event: ChangeEvent) -> bool:
        if event.owner_id != self.owner_id:
            return False
        return self.tables is None or event.table in self.tables

    async def get(self) -> ChangeEvent:
        return await self.queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)


class ChangeBus:
    """
    In-process change notification channel.

    publish() is synchronous and must be called on the event loop thread
    (the async backend adapter does so after each write completes).
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def subscribe(self, owner_id: str, tables: Iterable[str] | None = None) -> Subscription:
        sub = Subscription(self, owner_id, frozenset(tables) if tables is not None else None)
        self._subscriptions.append(sub)
        logger.debug("ChangeBus subscription added owner=%s tables=%s", owner_id, sub.tables)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(sub)

    def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for sub in list(self._subscriptions):
            if sub.wants(event):
                sub.queue.put_nowait(event)
                delivered += 1
        return delivered

    def publish_many(self, table: str, kind: ChangeKind, entity_ids: Iterable[str], owner_id: str) -> int:
        delivered = 0
        for entity_id in entity_ids:
            delivered += self.publish(ChangeEvent(table=table, kind=kind, entity_id=str(entity_id), owner_id=owner_id))
        return delivered

    def __len__(self) -> int:
        return len(self._subscriptions)


DEFAULT_WATCHED_TABLES = ("tasks", "projects", "follow_ups")


class RealtimeInvalidationListener:
    """
    Reload-on-change loop for one view.

    For every event on the watched tables:
    - a `projects` event clears the name cache (a rename must not be served stale)
    - the view is reloaded from scratch

    Reload failures are logged and the loop keeps going; the next event (or
    reload_now()) retries naturally.
    """

    def __init__(
            self,
            bus: ChangeBus,
            view: PageReloader,
            *,
            owner_id: str,
            names: NameCache | None = None,
            tables: Iterable[str] = DEFAULT_WATCHED_TABLES,
    ) -> None:
        self._bus = bus
        self._view = view
        self._owner_id = owner_id
        self._names = names
        self._tables = tuple(tables)
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None
        self.reload_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._subscription = self._bus.subscribe(self._owner_id, self._tables)
        self._task = asyncio.create_task(self._run(self._subscription), name="realtime-invalidation")
        logger.info("Realtime listener started owner=%s tables=%s", self._owner_id, ",".join(self._tables))

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Realtime listener stopped owner=%s", self._owner_id)

    async def reload_now(self) -> None:
        await self._reload()

    async def _run(self, sub: Subscription) -> None:
        while True:
            event = await sub.get()
            logger.debug("Change event %s %s %s", event.table, event.kind, event.entity_id)
            if event.table == "projects" and self._names is not None:
                self._names.clear()
            await self._reload()

    async def _reload(self) -> None:
        try:
            await self._view.reload()
            self.reload_count += 1
        except Exception:
            logger.exception("Realtime reload failed owner=%s", self._owner_id)
