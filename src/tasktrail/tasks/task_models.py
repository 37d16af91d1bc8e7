# src/tasktrail/tasks/task_models.py

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.OPEN
        try:
            return cls(raw)
        except ValueError:
            return cls.OPEN


class TaskPriority(StrEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_db(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}

# Task types are stored as free text; these are the ones the UI offers.
TASK_TYPES = (
    "Development",
    "Testing",
    "Documentation",
    "Review",
    "Meeting",
    "Meeting Recurring",
    "Research",
)
MEETING_TASK_TYPE = "Meeting"


class ProjectStatus(StrEnum):
    ACTIVE = "Active"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"

    @classmethod
    def from_db(cls, raw: str | None) -> ProjectStatus:
        if not raw:
            return cls.ACTIVE
        try:
            return cls(raw)
        except ValueError:
            return cls.ACTIVE


class RecurrenceType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LinkCategory(StrEnum):
    ONE_NOTE = "oneNote"
    TEAMS = "teams"
    EMAIL = "email"
    FILE = "file"
    FOLDER = "folder"


# ---- date helpers ----


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_date(raw: Any) -> date | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        # accept both "2024-05-01" and "2024-05-01T10:00:00+00:00"
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


def format_date(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_ts(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        try:
            dt = datetime.fromisoformat(str(raw))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


# ---- value objects ----


@dataclass(frozen=True, slots=True)
class NamedLink:
    id: str
    name: str
    url: str


_LINK_ATTRS = {
    LinkCategory.ONE_NOTE: "one_note",
    LinkCategory.TEAMS: "teams",
    LinkCategory.EMAIL: "email",
    LinkCategory.FILE: "file",
    LinkCategory.FOLDER: "folder",
}


@dataclass(frozen=True, slots=True)
class TaskLinks:
    """
    Named links grouped by a fixed set of categories.

    Each category holds an ordered tuple of NamedLink. Stored as JSON
    {"oneNote": [{"id", "name", "url"}, ...], ...}; legacy rows that stored
    plain URL strings are read as links named after their URL.
    """

    one_note: tuple[NamedLink, ...] = ()
    teams: tuple[NamedLink, ...] = ()
    email: tuple[NamedLink, ...] = ()
    file: tuple[NamedLink, ...] = ()
    folder: tuple[NamedLink, ...] = ()

    def get(self, category: LinkCategory) -> tuple[NamedLink, ...]:
        return getattr(self, _LINK_ATTRS[category])

    def _with(self, category: LinkCategory, links: tuple[NamedLink, ...]) -> TaskLinks:
        values = {attr: getattr(self, attr) for attr in _LINK_ATTRS.values()}
        values[_LINK_ATTRS[category]] = links
        return TaskLinks(**values)

    def with_link(self, category: LinkCategory, link: NamedLink) -> TaskLinks:
        return self._with(category, (*self.get(category), link))

    def without_link(self, category: LinkCategory, link_id: str) -> TaskLinks:
        return self._with(category, tuple(x for x in self.get(category) if x.id != link_id))

    def is_empty(self) -> bool:
        return not any(self.get(c) for c in LinkCategory)

    def to_json_obj(self) -> dict[str, list[dict[str, str]]]:
        out: dict[str, list[dict[str, str]]] = {}
        for category in LinkCategory:
            links = self.get(category)
            if links:
                out[category.value] = [{"id": x.id, "name": x.name, "url": x.url} for x in links]
        return out

    @classmethod
    def from_json_obj(cls, obj: Any) -> TaskLinks:
        if not isinstance(obj, dict):
            return cls()
        values: dict[str, tuple[NamedLink, ...]] = {}
        for category in LinkCategory:
            raw = obj.get(category.value)
            if isinstance(raw, str):
                raw = [raw]
            if not isinstance(raw, list):
                continue
            links: list[NamedLink] = []
            for i, item in enumerate(raw):
                if isinstance(item, str) and item.strip():
                    links.append(NamedLink(id=f"{category.value}-{i}", name=item, url=item))
                elif isinstance(item, dict) and item.get("url"):
                    links.append(
                        NamedLink(
                            id=str(item.get("id") or f"{category.value}-{i}"),
                            name=str(item.get("name") or item["url"]),
                            url=str(item["url"]),
                        )
                    )
            values[_LINK_ATTRS[category]] = tuple(links)
        return cls(**values)


@dataclass(frozen=True, slots=True)
class ChecklistItem:
    id: str
    text: str
    completed: bool
    timestamp: str


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    type: RecurrenceType
    interval: int = 1
    end_date: date | None = None
    days_of_week: tuple[int, ...] = ()  # 0=Sunday .. 6=Saturday


# ---- follow-ups ----

_AUTOMATIC_FOLLOW_UP_PATTERNS = (
    re.compile(r"^Task marked completed$"),
    re.compile(r"^Status changed from .+ to .+$"),
    re.compile(r"^Priority changed from .+ to .+$"),
    re.compile(r"^Task type changed from .+ to .+$"),
    re.compile(r"^Due date changed from .+ to .+$"),
    re.compile(r"^Task updated: Due date: .+ → .+$"),
)


def is_automatic_follow_up(text: str) -> bool:
    """True for system-generated audit entries (recognized by their template)."""
    return any(p.match(text or "") for p in _AUTOMATIC_FOLLOW_UP_PATTERNS)


@dataclass(frozen=True, slots=True)
class FollowUp:
    id: str
    task_number: str
    text: str
    created_at: datetime
    task_status: str | None = None

    @property
    def is_automatic(self) -> bool:
        return is_automatic_follow_up(self.text)


# ---- entities ----


@dataclass(slots=True)
class Task:
    id: str  # internal row id, storage joins only
    task_number: str  # "T468": what users see and reference
    owner_id: str
    title: str

    description: str = ""
    status: TaskStatus = TaskStatus.OPEN
    priority: TaskPriority = TaskPriority.MEDIUM
    responsible: str = ""
    scope: list[str] = field(default_factory=list)
    task_type: str = "Development"
    environment: str = ""

    project_id: str | None = None
    project_name: str = ""  # resolved at load time, never stored

    creation_date: date | None = None
    start_date: date | None = None
    due_date: date | None = None
    completion_date: date | None = None
    duration: float | None = None
    planned_time_hours: float | None = None

    dependencies: list[str] = field(default_factory=list)
    details: str = ""
    stakeholders: list[str] = field(default_factory=list)
    checklist: list[ChecklistItem] = field(default_factory=list)
    links: TaskLinks = field(default_factory=TaskLinks)
    follow_ups: list[FollowUp] = field(default_factory=list)

    is_recurring: bool = False
    recurrence: RecurrenceRule | None = None
    parent_task_id: str | None = None
    next_recurrence_date: date | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_series_root(self) -> bool:
        return self.is_recurring

    @property
    def is_series_instance(self) -> bool:
        return not self.is_recurring and bool(self.parent_task_id)


# Fields a caller may change through update_task(); everything else is
# identity, derived at load time, or owned by the store.
UPDATABLE_TASK_FIELDS = frozenset(
    {
        "title",
        "description",
        "status",
        "priority",
        "responsible",
        "scope",
        "task_type",
        "environment",
        "project_id",
        "start_date",
        "due_date",
        "completion_date",
        "duration",
        "planned_time_hours",
        "dependencies",
        "details",
        "stakeholders",
        "checklist",
        "links",
        "is_recurring",
        "recurrence",
        "parent_task_id",
        "next_recurrence_date",
    }
)


@dataclass(slots=True)
class TaskDraft:
    """Input for creating a task. The store assigns id and task number."""

    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.OPEN
    priority: TaskPriority = TaskPriority.MEDIUM
    responsible: str = ""
    scope: list[str] = field(default_factory=list)
    task_type: str = "Development"
    environment: str = ""
    project_id: str | None = None
    project_name: str | None = None  # resolved to project_id when project_id is empty
    start_date: date | None = None
    due_date: date | None = None
    duration: float | None = None
    planned_time_hours: float | None = None
    dependencies: list[str] = field(default_factory=list)
    details: str = ""
    stakeholders: list[str] = field(default_factory=list)
    checklist: list[ChecklistItem] = field(default_factory=list)
    links: TaskLinks = field(default_factory=TaskLinks)
    is_recurring: bool = False
    recurrence: RecurrenceRule | None = None
    parent_task_id: str | None = None


@dataclass(slots=True)
class Project:
    id: str
    owner_id: str
    name: str
    description: str = ""
    owner: str = ""
    team: list[str] = field(default_factory=list)
    scope: list[str] = field(default_factory=list)
    status: ProjectStatus = ProjectStatus.ACTIVE
    start_date: date | None = None
    end_date: date | None = None
    cost_center: str | None = None
    links: TaskLinks = field(default_factory=TaskLinks)
    created_at: datetime | None = None
    updated_at: datetime | None = None


UPDATABLE_PROJECT_FIELDS = frozenset(
    {
        "name",
        "description",
        "owner",
        "team",
        "scope",
        "status",
        "start_date",
        "end_date",
        "cost_center",
        "links",
    }
)


@dataclass(slots=True)
class TimeEntry:
    id: str
    owner_id: str
    task_number: str
    start_time: datetime
    task_title: str = ""
    project_name: str = ""
    responsible: str = ""
    end_time: datetime | None = None
    duration_minutes: int | None = None
    description: str = ""
    created_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self.end_time is None
