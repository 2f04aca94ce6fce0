"""Exceptions raised to direct callers of the notification core."""

from __future__ import annotations


class FinnotifyError(Exception):
    """Base class for finnotify errors."""


class ValidationError(FinnotifyError, ValueError):
    """Bad input to a detector or dispatcher call."""


class NotFoundError(ValidationError, LookupError):
    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id
