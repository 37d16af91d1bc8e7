# src/tasktrail/errors.py

"""
Error taxonomy of the sync layer.

- not-found: a referenced task/project/follow-up is absent. Recoverable, the
  operation aborts cleanly before any write.
- write failure: the backend rejected an insert/update/delete. Surfaced to the
  caller so it can notify the user; local state must not be committed past it.

Deliberately NOT errors:
- partial join misses during batch hydration (degrade to empty/default),
- audit follow-up insert failures (logged only),
- series operations that find nothing to do (neutral outcome).

Nothing in this package retries automatically.
"""

from __future__ import annotations

from typing import Any


class TrackerError(Exception):
    """Base exception for all tasktrail errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ---- not-found ----


class NotFoundError(TrackerError):
    """A referenced entity does not exist (for this owner)."""

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(
            f"{entity} not found: {key}",
            details={"entity": entity, "key": key},
        )
        self.entity = entity
        self.key = key


class TaskNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__("task", key)


class ProjectNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__("project", key)


class FollowUpNotFoundError(NotFoundError):
    def __init__(self, key: str) -> None:
        super().__init__("follow_up", key)


# ---- validation ----


class ValidationError(TrackerError):
    """Input rejected before reaching the backend."""


class ImmutableFollowUpError(ValidationError):
    """Audit (system-generated) follow-ups cannot be edited."""

    def __init__(self, follow_up_id: str) -> None:
        super().__init__(
            "Audit follow-ups are immutable",
            details={"follow_up_id": follow_up_id},
        )


# ---- write failure ----


class WriteError(TrackerError):
    """The backend rejected a write. Shown to the user; never retried here."""

    def __init__(self, operation: str, message: str, original_error: Exception | None = None) -> None:
        details: dict[str, Any] = {"operation": operation}
        if original_error is not None:
            details["original_error"] = f"{type(original_error).__name__}: {original_error}"
        super().__init__(message, details=details)
        self.operation = operation
        self.original_error = original_error
