# tests/test_bootstrap.py

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace

import pytest

from tasktrail.bootstrap import create_initial_state, init_logging
from tasktrail.config import Settings
from tasktrail.errors import TaskNotFoundError, WriteError
from tasktrail.logging_setup import _ConsoleNoiseFilter
from tasktrail.sync.pagination import PageRequest
from tasktrail.tasks.task_models import TaskDraft

from .fakes import OWNER


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKTRAIL_DATA_DIR", str(tmp_path / "d"))
    monkeypatch.delenv("TASKTRAIL_DB_PATH", raising=False)
    monkeypatch.setenv("TASKTRAIL_PAGE_SIZE", "0")
    monkeypatch.setenv("TASKTRAIL_LOG_TO_FILE", "no")
    monkeypatch.setenv("TASKTRAIL_SEARCH_DEBOUNCE_SECONDS", "not-a-number")
    monkeypatch.setenv("TASKTRAIL_OWNER_ID", "  alice ")

    s = Settings.from_env()

    assert s.db_path == tmp_path / "d" / "tracker.sqlite3"
    assert s.page_size == 1
    assert s.log_to_file is False
    assert s.search_debounce_seconds == 0.3
    assert s.owner_id == "alice"


@pytest.mark.asyncio
async def test_initial_state_is_wired_end_to_end(settings: SimpleNamespace) -> None:
    state = create_initial_state(settings=settings)

    assert settings.db_path.exists()
    assert state.owner_id == OWNER

    task = await state.tasks.create_task(OWNER, TaskDraft(title="hello"))
    page = await state.view.show(PageRequest(owner_id=OWNER, page_size=settings.page_size))
    assert [t.task_number for t in page.tasks] == [task.task_number]

    debounced = await state.debouncer.call(state.search.search, OWNER, "hello")
    assert debounced is not None and debounced.total == 1


def test_errors_serialize() -> None:
    err = TaskNotFoundError("T9")
    assert err.to_dict() == {
        "error_type": "TaskNotFoundError",
        "error_code": "TaskNotFoundError",
        "message": "task not found: T9",
        "details": {"entity": "task", "key": "T9"},
    }

    wrapped = WriteError("update_tasks", "update_tasks failed", original_error=ValueError("boom"))
    assert wrapped.details == {"operation": "update_tasks", "original_error": "ValueError: boom"}
    assert "boom" in str(wrapped)


def test_console_filter_quiets_realtime_and_third_party() -> None:
    f = _ConsoleNoiseFilter()

    def record(name: str, level: int) -> logging.LogRecord:
        return logging.LogRecord(name, level, __file__, 1, "msg", None, None)

    assert f.filter(record("tasktrail.sync.pagination", logging.INFO))
    assert not f.filter(record("tasktrail.sync.realtime", logging.INFO))
    assert f.filter(record("tasktrail.sync.realtime", logging.WARNING))
    assert not f.filter(record("urllib3", logging.WARNING))
    assert f.filter(record("urllib3", logging.ERROR))


def test_init_logging_writes_file(settings: SimpleNamespace) -> None:
    root = logging.getLogger()
    saved = list(root.handlers)
    try:
        settings.log_to_file = True
        init_logging(settings)
        logging.getLogger("tasktrail.test").info("hello log")
        for h in root.handlers:
            h.flush()
        assert "hello log" in (settings.data_dir / "tasktrail.log").read_text("utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved:
            root.addHandler(h)
        logging.captureWarnings(False)
