# src/tasktrail/tasks/task_query.py

"""
Declarative task query shared by the store and the pagination controller.

Count queries and data queries are built from the same TaskQuery, so both
phases of a page load always apply identical predicates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from .task_models import TaskPriority, TaskStatus


class FilterClass(StrEnum):
    ACTIVE = "active"
    OPEN = "open"
    IN_PROGRESS = "inprogress"
    ON_HOLD = "onhold"
    CRITICAL = "critical"
    ALL = "all"


# Status sets per filter class. CRITICAL is special-cased (priority + not completed).
FILTER_STATUSES: dict[FilterClass, tuple[TaskStatus, ...]] = {
    FilterClass.ACTIVE: (TaskStatus.OPEN, TaskStatus.IN_PROGRESS),
    FilterClass.OPEN: (TaskStatus.OPEN,),
    FilterClass.IN_PROGRESS: (TaskStatus.IN_PROGRESS,),
    FilterClass.ON_HOLD: (TaskStatus.ON_HOLD,),
}


class SortField(StrEnum):
    DUE_DATE = "dueDate"
    TITLE = "title"
    RESPONSIBLE = "responsible"
    TASK_TYPE = "taskType"
    ENVIRONMENT = "environment"
    TASK_NUMBER = "id"
    PRIORITY = "priority"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


# UI sort field -> backend column. PRIORITY is intentionally absent: the
# backend cannot order by rank, see sync.pagination.
SORT_COLUMNS: dict[SortField, str] = {
    SortField.DUE_DATE: "due_date",
    SortField.TITLE: "title",
    SortField.RESPONSIBLE: "responsible",
    SortField.TASK_TYPE: "task_type",
    SortField.ENVIRONMENT: "environment",
    SortField.TASK_NUMBER: "task_number",
}

SORTABLE_COLUMNS = frozenset(SORT_COLUMNS.values())


@dataclass(frozen=True, slots=True)
class TaskQuery:
    owner_id: str
    filter: FilterClass = FilterClass.ALL
    project_id: str | None = None

    # Search mode: ILIKE on title/description/responsible, OR the task number
    # is one of text_task_numbers (matched through follow-up text).
    text: str | None = None
    text_task_numbers: frozenset[str] = field(default_factory=frozenset)

    order_by: str = "due_date"
    descending: bool = False
    offset: int | None = None
    limit: int | None = None

    def matches(self, status: TaskStatus, priority: TaskPriority) -> bool:
        """In-memory twin of the SQL filter predicate; tests check query results against it."""
        if self.filter == FilterClass.ALL:
            return True
        if self.filter == FilterClass.CRITICAL:
            return priority == TaskPriority.CRITICAL and status != TaskStatus.COMPLETED
        return status in FILTER_STATUSES[self.filter]
