# src/tasktrail/bootstrap.py

"""
Composition root.

- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store, change bus, async backend and sync components
  into AppState.

Nothing here starts background work; call start_realtime() from inside a
running event loop.
"""

from __future__ import annotations

import logging

from .config import get_settings
from .core.state import AppState
from .logging_setup import setup_logging
from .sync.audit_trail import AuditTrail
from .sync.batch_loader import BatchLoader
from .sync.name_cache import NameCache
from .sync.pagination import PaginationController, SearchDebouncer
from .sync.realtime import ChangeBus, RealtimeInvalidationListener
from .sync.recurrence import RecurrenceManager
from .sync.search import GlobalSearch
from .sync.task_service import TaskService
from .sync.view_state import ActiveView, ViewState
from .tasks.backend import AsyncTaskBackend
from .tasks.task_store import TaskStore
from .tracking.time_tracker import TimeTracker

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, owner_id: str | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    owner = owner_id or settings.owner_id
    store = TaskStore(settings.db_path)
    bus = ChangeBus()
    backend = AsyncTaskBackend(store, bus)

    names = NameCache()
    loader = BatchLoader(backend, names)
    audit = AuditTrail(backend)
    recurrence = RecurrenceManager(backend, audit)
    pagination = PaginationController(backend, loader)
    view = ActiveView(pagination, ViewState(grace_seconds=settings.pending_edit_grace_seconds))

    state = AppState(
        settings=settings,
        owner_id=owner,
        store=store,
        bus=bus,
        backend=backend,
        names=names,
        loader=loader,
        audit=audit,
        recurrence=recurrence,
        pagination=pagination,
        debouncer=SearchDebouncer(settings.search_debounce_seconds),
        view=view,
        listener=RealtimeInvalidationListener(bus, view, owner_id=owner, names=names),
        tasks=TaskService(backend, loader, audit, names),
        search=GlobalSearch(backend),
        time_tracker=TimeTracker(backend, recurrence),
    )
    logger.info("State ready owner=%s db=%s", owner, settings.db_path)
    return state


def init_logging(settings=None) -> None:
    """Configure logging from settings (console level + optional file log)."""
    if settings is None:
        settings = get_settings()
    level = logging.getLevelName(str(settings.log_level).upper())
    setup_logging(
        log_dir=settings.data_dir,
        console_level=level if isinstance(level, int) else logging.INFO,
        log_to_file=settings.log_to_file,
    )


def start_realtime(state: AppState) -> None:
    state.listener.start()


async def shutdown(state: AppState) -> None:
    await state.listener.stop()
    state.store.close()
