# src/tasktrail/sync/task_service.py

from __future__ import annotations

"""
Write path for tasks, follow-ups and projects.

Every mutation goes to the backend immediately; nothing is buffered. Task
edits pass through the audit trail, which owns completion stamping. Reads
return hydrated tasks (follow-ups + project name) via the batch loader.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime
from typing import Any

from ..core.ports import TaskBackend
from ..errors import (
    FollowUpNotFoundError,
    ImmutableFollowUpError,
    NotFoundError,
    ProjectNotFoundError,
    TaskNotFoundError,
    ValidationError,
)
from ..tasks.task_models import (
    MEETING_TASK_TYPE,
    UPDATABLE_PROJECT_FIELDS,
    UPDATABLE_TASK_FIELDS,
    ChecklistItem,
    FollowUp,
    LinkCategory,
    NamedLink,
    Project,
    Task,
    TaskDraft,
    TaskStatus,
    format_ts,
    utcnow,
)
from .audit_trail import AuditTrail
from .batch_loader import BatchLoader
from .name_cache import NameCache

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class TaskService:
    def __init__(
            self,
            backend: TaskBackend,
            loader: BatchLoader,
            audit: AuditTrail,
            names: NameCache | None = None,
    ) -> None:
        self._backend = backend
        self._loader = loader
        self._audit = audit
        self._names = names if names is not None else loader.names

    # ---- tasks ----

    async def _require_task(self, owner_id: str, task_number: str) -> Task:
        task = await self._backend.get_task(owner_id, task_number=task_number)
        if task is None:
            raise TaskNotFoundError(task_number)
        return task

    async def _resolve_project_id(self, owner_id: str, draft: TaskDraft) -> str | None:
        if draft.project_id:
            project = await self._backend.get_project(owner_id, project_id=draft.project_id)
            if project is None:
                raise ProjectNotFoundError(draft.project_id)
            return project.id
        if draft.project_name and draft.project_name.strip():
            name = draft.project_name.strip()
            project = await self._backend.get_project(owner_id, name=name)
            if project is None:
                raise ProjectNotFoundError(name)
            return project.id
        return None

    async def _check_series_link(
            self,
            owner_id: str,
            is_recurring: bool,
            parent_task_id: str | None,
            *,
            task_id: str | None = None,
    ) -> None:
        """A series root is never an instance, and an instance's parent must be a root."""
        if not parent_task_id:
            return
        if is_recurring:
            raise ValidationError(
                "A recurring root cannot belong to another series",
                details={"fields": ["is_recurring", "parent_task_id"]},
            )
        parent = None
        if parent_task_id != task_id:
            parent = await self._backend.get_task(owner_id, task_id=parent_task_id)
        if parent is None or not parent.is_recurring or parent.parent_task_id:
            raise ValidationError(
                "Parent task is not a recurring root",
                details={"field": "parent_task_id", "parent_task_id": parent_task_id},
            )

    async def create_task(self, owner_id: str, draft: TaskDraft, *, now: datetime | None = None) -> Task:
        if not draft.title or not draft.title.strip():
            raise ValidationError("Task title is required", details={"field": "title"})
        if draft.is_recurring and draft.recurrence is None:
            raise ValidationError("Recurring task needs a recurrence rule", details={"field": "recurrence"})
        await self._check_series_link(owner_id, draft.is_recurring, draft.parent_task_id)

        draft.project_id = await self._resolve_project_id(owner_id, draft)
        (task,) = await self._backend.insert_tasks(owner_id, [draft], now=now)
        logger.info("Created task %s owner=%s", task.task_number, owner_id)
        (hydrated,) = await self._loader.hydrate([task])
        return hydrated

    async def get_task(self, owner_id: str, task_number: str) -> Task:
        task = await self._loader.load_single(owner_id, task_number)
        if task is None:
            raise TaskNotFoundError(task_number)
        return task

    async def update_task(
            self,
            owner_id: str,
            task_number: str,
            changes: dict[str, Any],
            *,
            now: datetime | None = None,
    ) -> Task:
        """
        Apply a partial edit.

        Unknown fields are rejected. completion_date is never taken from the
        caller; the audit plan decides it from the status transition.
        """
        unknown = sorted(set(changes) - UPDATABLE_TASK_FIELDS)
        if unknown:
            raise ValidationError("Unknown task fields", details={"fields": unknown})
        if "title" in changes and not str(changes["title"] or "").strip():
            raise ValidationError("Task title is required", details={"field": "title"})

        now = now or utcnow()
        old = await self._require_task(owner_id, task_number)
        if "is_recurring" in changes or "parent_task_id" in changes:
            await self._check_series_link(
                owner_id,
                bool(changes.get("is_recurring", old.is_recurring)),
                changes.get("parent_task_id", old.parent_task_id),
                task_id=old.id,
            )
        if changes.get("project_id"):
            await self.get_project(owner_id, changes["project_id"])
        audit_plan = self._audit.plan(old, changes, now)

        if audit_plan.effective_changes:
            await self._backend.update_tasks_fields(owner_id, [old.id], audit_plan.effective_changes, now=now)
            await self._audit.record(owner_id, old.task_number, audit_plan.entries)
            logger.info(
                "Updated task %s fields=%s audit=%d",
                task_number,
                ",".join(sorted(audit_plan.effective_changes)),
                len(audit_plan.entries),
            )
        return await self.get_task(owner_id, task_number)

    async def delete_task(self, owner_id: str, task_number: str) -> None:
        task = await self._require_task(owner_id, task_number)
        await self._backend.delete_follow_ups_for_tasks(owner_id, [task.task_number])
        await self._backend.delete_time_entries_for_tasks(owner_id, [task.task_number])
        await self._backend.delete_tasks(owner_id, [task.id])
        logger.info("Deleted task %s", task_number)

    async def mark_meetings_completed(self, owner_id: str, until: date) -> int:
        """
        Complete every Meeting due on or before `until`.

        The completion date is each meeting's own due date, not today.
        """
        meetings = await self._backend.list_open_tasks_of_type_due(owner_id, MEETING_TASK_TYPE, until)
        by_due: dict[date, list[str]] = defaultdict(list)
        for task in meetings:
            if task.due_date is not None:
                by_due[task.due_date].append(task.id)

        updated = 0
        for due, ids in sorted(by_due.items()):
            updated += await self._backend.update_tasks_fields(
                owner_id, ids, {"status": TaskStatus.COMPLETED, "completion_date": due}
            )
        logger.info("Marked %d meeting(s) completed up to %s", updated, until)
        return updated

    # ---- follow-ups ----

    async def add_follow_up(
            self,
            owner_id: str,
            task_number: str,
            text: str,
            *,
            now: datetime | None = None,
    ) -> FollowUp:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Follow-up text is required", details={"field": "text"})
        task = await self._require_task(owner_id, task_number)
        follow_up = FollowUp(
            id=_new_id(),
            task_number=task.task_number,
            text=text,
            created_at=now or utcnow(),
            task_status=str(task.status),
        )
        await self._backend.insert_follow_ups(owner_id, [follow_up])
        return follow_up

    async def edit_follow_up(
            self,
            owner_id: str,
            follow_up_id: str,
            *,
            text: str | None = None,
            created_at: datetime | None = None,
    ) -> FollowUp:
        existing = await self._backend.get_follow_up(owner_id, follow_up_id)
        if existing is None:
            raise FollowUpNotFoundError(follow_up_id)
        if existing.is_automatic:
            raise ImmutableFollowUpError(follow_up_id)
        if text is not None:
            text = text.strip()
            if not text:
                raise ValidationError("Follow-up text is required", details={"field": "text"})

        await self._backend.update_follow_up(owner_id, follow_up_id, text=text, created_at=created_at)
        updated = await self._backend.get_follow_up(owner_id, follow_up_id)
        if updated is None:
            raise FollowUpNotFoundError(follow_up_id)
        return updated

    async def delete_follow_up(self, owner_id: str, follow_up_id: str) -> None:
        if not await self._backend.delete_follow_up(owner_id, follow_up_id):
            raise FollowUpNotFoundError(follow_up_id)

    # ---- checklist / links (persist immediately) ----

    async def _save_fields(self, owner_id: str, task: Task, fields: dict[str, Any]) -> Task:
        await self._backend.update_tasks_fields(owner_id, [task.id], fields)
        return await self.get_task(owner_id, task.task_number)

    async def add_checklist_item(self, owner_id: str, task_number: str, text: str) -> Task:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Checklist item text is required", details={"field": "text"})
        task = await self._require_task(owner_id, task_number)
        item = ChecklistItem(id=_new_id(), text=text, completed=False, timestamp=format_ts(utcnow()) or "")
        return await self._save_fields(owner_id, task, {"checklist": [*task.checklist, item]})

    async def toggle_checklist_item(self, owner_id: str, task_number: str, item_id: str) -> Task:
        task = await self._require_task(owner_id, task_number)
        if not any(i.id == item_id for i in task.checklist):
            raise NotFoundError("checklist_item", item_id)
        checklist = [
            ChecklistItem(id=i.id, text=i.text, completed=not i.completed, timestamp=format_ts(utcnow()) or "")
            if i.id == item_id
            else i
            for i in task.checklist
        ]
        return await self._save_fields(owner_id, task, {"checklist": checklist})

    async def remove_checklist_item(self, owner_id: str, task_number: str, item_id: str) -> Task:
        task = await self._require_task(owner_id, task_number)
        checklist = [i for i in task.checklist if i.id != item_id]
        if len(checklist) == len(task.checklist):
            raise NotFoundError("checklist_item", item_id)
        return await self._save_fields(owner_id, task, {"checklist": checklist})

    async def add_link(
            self,
            owner_id: str,
            task_number: str,
            category: LinkCategory | str,
            url: str,
            name: str | None = None,
    ) -> Task:
        url = (url or "").strip()
        if not url:
            raise ValidationError("Link URL is required", details={"field": "url"})
        category = LinkCategory(category)
        task = await self._require_task(owner_id, task_number)
        link = NamedLink(id=_new_id(), name=(name or "").strip() or url, url=url)
        return await self._save_fields(owner_id, task, {"links": task.links.with_link(category, link)})

    async def remove_link(self, owner_id: str, task_number: str, category: LinkCategory | str, link_id: str) -> Task:
        category = LinkCategory(category)
        task = await self._require_task(owner_id, task_number)
        if not any(link.id == link_id for link in task.links.get(category)):
            raise NotFoundError("link", link_id)
        return await self._save_fields(owner_id, task, {"links": task.links.without_link(category, link_id)})

    # ---- projects ----

    async def create_project(self, owner_id: str, name: str, **fields: Any) -> Project:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Project name is required", details={"field": "name"})
        unknown = sorted(set(fields) - UPDATABLE_PROJECT_FIELDS)
        if unknown:
            raise ValidationError("Unknown project fields", details={"fields": unknown})
        if await self._backend.get_project(owner_id, name=name) is not None:
            raise ValidationError("Project name already exists", details={"name": name})

        project = await self._backend.insert_project(owner_id, name, fields)
        self._names.merge({project.id: project.name})
        logger.info("Created project %s", name)
        return project

    async def get_project(self, owner_id: str, project_id: str) -> Project:
        project = await self._backend.get_project(owner_id, project_id=project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def list_projects(self, owner_id: str) -> list[Project]:
        return await self._backend.list_projects(owner_id)

    async def update_project(self, owner_id: str, project_id: str, changes: dict[str, Any]) -> Project:
        unknown = sorted(set(changes) - UPDATABLE_PROJECT_FIELDS)
        if unknown:
            raise ValidationError("Unknown project fields", details={"fields": unknown})
        if "name" in changes and not str(changes["name"] or "").strip():
            raise ValidationError("Project name is required", details={"field": "name"})

        await self.get_project(owner_id, project_id)
        if "name" in changes:
            name = str(changes["name"]).strip()
            clash = await self._backend.get_project(owner_id, name=name)
            if clash is not None and clash.id != project_id:
                raise ValidationError("Project name already exists", details={"name": name})
            changes = {**changes, "name": name}
        await self._backend.update_project_fields(owner_id, project_id, changes)
        self._names.invalidate(project_id)
        return await self.get_project(owner_id, project_id)

    async def delete_project(self, owner_id: str, project_id: str) -> int:
        """Delete a project with its tasks, their follow-ups and time entries. Returns tasks removed."""
        await self.get_project(owner_id, project_id)
        tasks = await self._backend.list_tasks_by_project(owner_id, project_id)
        removed = 0
        if tasks:
            await self._backend.delete_follow_ups_for_tasks(owner_id, [t.task_number for t in tasks])
            await self._backend.delete_time_entries_for_tasks(owner_id, [t.task_number for t in tasks])
            removed = await self._backend.delete_tasks(owner_id, [t.id for t in tasks])
        await self._backend.delete_project(owner_id, project_id)
        self._names.invalidate(project_id)
        logger.info("Deleted project %s (tasks=%d)", project_id, removed)
        return removed
