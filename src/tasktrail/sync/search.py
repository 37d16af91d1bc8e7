# src/tasktrail/sync/search.py

from __future__ import annotations

"""
Cross-entity search: tasks, projects, time entries, follow-ups.

The four queries run concurrently (limit 50 each) and the merged hits are
ranked by relevance, highest first.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..core.ports import TaskBackend

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50


class SearchHitKind(StrEnum):
    TASK = "task"
    PROJECT = "project"
    TIME_ENTRY = "time_entry"
    FOLLOW_UP = "follow_up"


@dataclass(frozen=True, slots=True)
class SearchHit:
    kind: SearchHitKind
    entity_id: str
    title: str
    description: str
    relevance: float
    item: Any = None


@dataclass(frozen=True, slots=True)
class SearchResults:
    hits: list[SearchHit] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.hits)

    def of_kind(self, kind: SearchHitKind) -> list[SearchHit]:
        return [h for h in self.hits if h.kind == kind]


def relevance(term: str, fields: Sequence[str | None]) -> float:
    """
    Score a hit: earlier fields weigh more (1, 1/2, 1/3, ...).

    Per matching field: weight * position score (earlier match is better),
    plus 2 * weight for an exact match and 0.5 * weight when the match starts
    a word.
    """
    needle = term.lower()
    score = 0.0
    for i, value in enumerate(fields):
        if not value:
            continue
        text = value.lower()
        pos = text.find(needle)
        if pos < 0:
            continue
        weight = 1 / (i + 1)
        score += weight * (1 - pos / len(text))
        if text == needle:
            score += weight * 2
        if pos == 0 or text[pos - 1] == " ":
            score += weight * 0.5
    return score


class GlobalSearch:
    def __init__(self, backend: TaskBackend, *, limit: int = DEFAULT_LIMIT) -> None:
        self._backend = backend
        self._limit = limit

    async def search(self, owner_id: str, term: str) -> SearchResults:
        term = (term or "").strip()
        if not term:
            return SearchResults()

        tasks, projects, entries, follow_ups = await asyncio.gather(
            self._backend.search_tasks(owner_id, term, limit=self._limit),
            self._backend.search_projects(owner_id, term, limit=self._limit),
            self._backend.search_time_entries(owner_id, term, limit=self._limit),
            self._backend.search_follow_ups(owner_id, term, limit=self._limit),
        )

        hits: list[SearchHit] = []
        hits.extend(
            SearchHit(
                kind=SearchHitKind.TASK,
                entity_id=t.id,
                title=f"{t.task_number}: {t.title}",
                description=t.description,
                relevance=relevance(term, [t.title, t.description, t.task_number]),
                item=t,
            )
            for t in tasks
        )
        hits.extend(
            SearchHit(
                kind=SearchHitKind.PROJECT,
                entity_id=p.id,
                title=p.name,
                description=p.description,
                relevance=relevance(term, [p.name, p.description, p.owner]),
                item=p,
            )
            for p in projects
        )
        hits.extend(
            SearchHit(
                kind=SearchHitKind.TIME_ENTRY,
                entity_id=e.id,
                title=f"{e.task_number}: {e.task_title}",
                description=f"{e.duration_minutes or 0} min in {e.project_name}".rstrip(),
                relevance=relevance(term, [e.task_title, e.project_name, e.task_number]),
                item=e,
            )
            for e in entries
        )
        hits.extend(
            SearchHit(
                kind=SearchHitKind.FOLLOW_UP,
                entity_id=fu.id,
                title=f"Follow-up for {fu.task_number}",
                description=fu.text,
                relevance=relevance(term, [fu.text, fu.task_number]),
                item=fu,
            )
            for fu in follow_ups
        )

        hits.sort(key=lambda h: h.relevance, reverse=True)
        logger.debug("Global search %r: %d hit(s)", term, len(hits))
        return SearchResults(hits=hits)
