"""Application errors raised by services and rendered by main.py."""

from typing import Any, Iterable, Optional


class AppError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[list[Any]] = None):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details


class ValidationError(AppError):
    status_code = 400
    error = "Validation failed"


class NotFoundError(AppError):
    status_code = 404
    error = "Not found"


class PreconditionFailed(AppError):
    """Entity is in the wrong status for the requested transition."""

    status_code = 400
    error = "Precondition failed"

    def __init__(self, message: str, current: Any = None, allowed: Iterable[Any] = ()):
        self.current = current
        self.allowed = [getattr(a, "value", a) for a in allowed]
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409
    error = "Conflict"


class AuthError(AppError):
    status_code = 401
    error = "Access token required"


class ForbiddenError(AppError):
    status_code = 403
    error = "Invalid or expired token"


class UpstreamError(AppError):
    status_code = 500
    error = "Upstream service failed"
