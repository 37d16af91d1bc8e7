# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from tasktrail.bootstrap import create_initial_state
from tasktrail.core.state import AppState
from tasktrail.sync.audit_trail import AuditTrail
from tasktrail.sync.batch_loader import BatchLoader
from tasktrail.sync.realtime import ChangeBus
from tasktrail.sync.recurrence import RecurrenceManager
from tasktrail.sync.task_service import TaskService
from tasktrail.tasks.backend import AsyncTaskBackend
from tasktrail.tasks.task_store import TaskStore

from .fakes import OWNER, CountingBackend


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the composition root.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="tasktrail-test",
        log_level="DEBUG",
        log_to_file=False,
        data_dir=tmp_path / "data",
        db_path=tmp_path / "data" / "tracker.sqlite3",
        owner_id=OWNER,
        page_size=10,
        search_debounce_seconds=0.01,
        pending_edit_grace_seconds=5.0,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path)


@pytest.fixture()
def bus() -> ChangeBus:
    return ChangeBus()


@pytest.fixture()
def backend(store: TaskStore, bus: ChangeBus) -> AsyncTaskBackend:
    return AsyncTaskBackend(store, bus)


@pytest.fixture()
def counting(backend: AsyncTaskBackend) -> CountingBackend:
    return CountingBackend(backend)


@pytest.fixture()
def service(counting: CountingBackend) -> TaskService:
    loader = BatchLoader(counting)
    return TaskService(counting, loader, AuditTrail(counting))


@pytest.fixture()
def recurrence(counting: CountingBackend) -> RecurrenceManager:
    return RecurrenceManager(counting, AuditTrail(counting))


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired by the real composition root.

    NOTE: We keep the real SQLite store here because its correctness is part
    of what we want to test.
    """
    return create_initial_state(settings=settings)
