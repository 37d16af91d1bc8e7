# src/tasktrail/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..sync.audit_trail import AuditTrail
from ..sync.batch_loader import BatchLoader
from ..sync.name_cache import NameCache
from ..sync.pagination import PaginationController, SearchDebouncer
from ..sync.realtime import ChangeBus, RealtimeInvalidationListener
from ..sync.recurrence import RecurrenceManager
from ..sync.search import GlobalSearch
from ..sync.task_service import TaskService
from ..sync.view_state import ActiveView
from ..tasks.backend import AsyncTaskBackend
from ..tasks.task_store import TaskStore
from ..tracking.time_tracker import TimeTracker


@dataclass
class AppState:
    # Settings are kept on the state so components can read them later.
    settings: object
    owner_id: str

    store: TaskStore
    bus: ChangeBus
    backend: AsyncTaskBackend

    names: NameCache
    loader: BatchLoader
    audit: AuditTrail
    recurrence: RecurrenceManager
    pagination: PaginationController
    debouncer: SearchDebouncer
    view: ActiveView
    listener: RealtimeInvalidationListener

    tasks: TaskService
    search: GlobalSearch
    time_tracker: TimeTracker
