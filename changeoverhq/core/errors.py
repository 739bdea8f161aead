"""Exceptions raised by the ChangeoverHQ core."""

from __future__ import annotations


class ValidationError(RuntimeError):
    """Raised when incoming data fails validation."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class StorageWriteError(RuntimeError):
    """Raised when the store refuses a write, e.g. because the quota is full."""

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class RecordNotFound(ValidationError):
    """Raised when a property or changeover id is unknown."""
