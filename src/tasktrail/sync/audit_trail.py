# src/tasktrail/sync/audit_trail.py

from __future__ import annotations

"""
Automatic audit trail for task edits.

plan() compares a stored task with a change set and returns:
- the audit follow-up texts to write (one per tracked field that changed),
- the change set to persist, with completion_date decided here and nowhere
  else.

Completion rules:
- moving INTO Completed stamps today's date and writes one
  "Task marked completed" entry instead of the generic status entry
  (no entry at all for Meeting tasks);
- leaving Completed clears the date;
- staying Completed keeps the stored date;
- a caller-supplied completion_date is always ignored.

record() writes the entries best-effort: the trail is advisory, so a failed
insert is logged and the edit itself still counts.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from ..core.ports import TaskBackend
from ..tasks.task_models import (
    MEETING_TASK_TYPE,
    FollowUp,
    Task,
    TaskPriority,
    TaskStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

COMPLETED_TEXT = "Task marked completed"


def _changed_text(label: str, old: Any, new: Any) -> str:
    return f'{label} changed from "{old}" to "{new}"'


def _date_text(value: date | None) -> str:
    return value.isoformat() if value is not None else "none"


@dataclass(frozen=True, slots=True)
class AuditEntry:
    text: str
    task_status: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class AuditPlan:
    entries: tuple[AuditEntry, ...] = ()
    effective_changes: dict[str, Any] = field(default_factory=dict)


def plan(old: Task, changes: dict[str, Any], now: datetime | None = None) -> AuditPlan:
    """Diff `old` against `changes` (task attribute names) and decide what to write."""
    now = now or utcnow()
    effective = {k: v for k, v in changes.items() if k != "completion_date"}

    if "status" in effective:
        effective["status"] = TaskStatus(effective["status"])
    if "priority" in effective:
        effective["priority"] = TaskPriority(effective["priority"])

    new_status: TaskStatus = effective.get("status", old.status)
    new_type = effective.get("task_type", old.task_type)
    texts: list[str] = []

    was_completed = old.status == TaskStatus.COMPLETED
    is_completed = new_status == TaskStatus.COMPLETED

    if is_completed and not was_completed:
        effective["completion_date"] = now.date()
        if new_type != MEETING_TASK_TYPE:
            texts.append(COMPLETED_TEXT)
    elif new_status != old.status:
        if was_completed:
            effective["completion_date"] = None
        texts.append(_changed_text("Status", old.status, new_status))

    if "priority" in effective and effective["priority"] != old.priority:
        texts.append(_changed_text("Priority", old.priority, effective["priority"]))

    if "task_type" in effective and new_type != old.task_type:
        texts.append(_changed_text("Task type", old.task_type or "none", new_type or "none"))

    if "due_date" in effective and effective["due_date"] != old.due_date:
        texts.append(_changed_text("Due date", _date_text(old.due_date), _date_text(effective["due_date"])))

    entries = tuple(AuditEntry(text=t, task_status=str(new_status), created_at=now) for t in texts)
    return AuditPlan(entries=entries, effective_changes=effective)


class AuditTrail:
    def __init__(self, backend: TaskBackend) -> None:
        self._backend = backend

    plan = staticmethod(plan)

    async def record(self, owner_id: str, task_number: str, entries: tuple[AuditEntry, ...] | list[AuditEntry]) -> int:
        """Insert entries in one batch. Never raises; returns how many were written."""
        if not entries:
            return 0
        follow_ups = [
            FollowUp(
                id=uuid.uuid4().hex,
                task_number=task_number,
                text=e.text,
                created_at=e.created_at,
                task_status=e.task_status,
            )
            for e in entries
        ]
        try:
            return await self._backend.insert_follow_ups(owner_id, follow_ups)
        except Exception:
            logger.exception("Audit follow-up insert failed task=%s entries=%d", task_number, len(follow_ups))
            return 0
