"""Typed failures raised by the store, the GitHub client and the task service.

Every error carries the HTTP status the API layer should answer with, so the
server maps all of them in one place.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for expected, user-facing failures."""

    status: int = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(AppError):
    """A task payload failed per-field validation."""

    status = 400

    def __init__(self, field: str, reason: str, errors: list[dict] | None = None) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason
        self.errors = errors or [{"field": field, "reason": reason}]

    def to_dict(self) -> dict:
        return {"error": self.message, "field": self.field, "errors": self.errors}


class BadRequestError(AppError):
    status = 400


class NotFoundError(AppError):
    status = 404

    def __init__(self, entity: str, id: str) -> None:
        super().__init__(f"{entity} not found: {id}")
        self.entity = entity
        self.id = id


class ConflictError(AppError):
    """Another task already uses this name."""

    status = 409

    def __init__(self, name: str) -> None:
        super().__init__(f"Task name already exists: {name}")
        self.name = name


class RemoteAPIError(AppError):
    """Non-2xx (or transport failure) from the remote workflow API.

    `status` is the upstream HTTP status, 0 when no response was received.
    """

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message, status=status)

    def to_dict(self) -> dict:
        return {"error": self.message, "upstream_status": self.status}


class StorageError(AppError):
    status = 500
