"""Error taxonomy shared by the schema, record and query services."""

from __future__ import annotations

from typing import Any

# purpose: give services one exception family the HTTP layer can map to status codes
# status: active


class DynTableError(Exception):
    """Base error carrying the HTTP status it is surfaced with."""

    status_code = 500

    def __init__(self, message: str, *, detail: Any | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundOrDenied(DynTableError):
    """Schema or record missing, or the caller may not see it."""

    status_code = 404


class ValidationError(DynTableError):
    status_code = 400


class PermissionDenied(DynTableError):
    status_code = 403


class ConflictError(DynTableError):
    status_code = 409


class InternalError(DynTableError):
    status_code = 500
