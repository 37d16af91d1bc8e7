# src/tasktrail/sync/name_cache.py

from __future__ import annotations

from collections.abc import Iterable, Mapping


class NameCache:
    """
    Project id -> display name.

    An explicit object owned by the batch loader and passed by reference to
    whoever needs to invalidate it. Entries never expire on their own; the
    realtime listener clears the cache when projects change.
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._names: dict[str, str] = dict(initial or {})

    def get(self, project_id: str | None) -> str | None:
        if not project_id:
            return None
        return self._names.get(project_id)

    def lookup_many(self, project_ids: Iterable[str]) -> dict[str, str]:
        return {pid: self._names[pid] for pid in project_ids if pid in self._names}

    def missing(self, project_ids: Iterable[str | None]) -> set[str]:
        return {pid for pid in project_ids if pid and pid not in self._names}

    def merge(self, names: Mapping[str, str]) -> None:
        self._names.update(names)

    def invalidate(self, project_id: str) -> None:
        self._names.pop(project_id, None)

    def clear(self) -> None:
        self._names.clear()

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._names

    def __len__(self) -> int:
        return len(self._names)
