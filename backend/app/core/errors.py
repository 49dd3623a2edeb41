# app/core/errors.py
"""
Application error taxonomy.

Services raise these instead of HTTPException so they stay usable outside a
request; `app.main` maps each class to its HTTP status and renders
{"success": false, "error": {"code", "message"}}.
"""
from typing import Any, Optional


class AppError(Exception):
    """Base class for errors that are reported to the caller as-is."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class BadRequestError(AppError):
    """Missing or invalid request field."""

    status_code = 400
    code = "BAD_REQUEST"


class SelfActionError(BadRequestError):
    """An admin tried to ban or delete their own account."""

    code = "SELF_ACTION_FORBIDDEN"


class PermissionDeniedError(AppError):
    status_code = 403
    code = "ACCESS_DENIED"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class QuotaExceededError(AppError):
    status_code = 429
    code = "QUOTA_EXCEEDED"


class DatabaseResetError(AppError):
    """A reset/seed step failed; `details` carries the per-step report."""

    status_code = 500
    code = "DATABASE_RESET_FAILED"
