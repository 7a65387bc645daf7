from __future__ import annotations


class AppError(Exception):
    """Base error for expected failures."""

    def __init__(self, message: str, *, http_status: int = 400):
        super().__init__(message)
        self.message = message
        self.http_status = http_status


class AuthError(AppError):
    def __init__(self, message: str = "unauthorized"):
        super().__init__(message, http_status=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "forbidden"):
        super().__init__(message, http_status=403)


class PermissionDeniedError(ForbiddenError):
    """Principal resolved (or not) but lacks the required permission(s)."""

    def __init__(self, message: str = "you do not have permission to perform this action"):
        super().__init__(message)


class TenantIsolationError(ForbiddenError):
    """Cross-company access. The message never says which tenant or why."""

    def __init__(self) -> None:
        super().__init__("operation not permitted")


class NotFoundError(AppError):
    def __init__(self, message: str = "not found"):
        super().__init__(message, http_status=404)


class ValidationError(AppError):
    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message, http_status=422)
        self.field = field


class ConflictError(AppError):
    def __init__(self, message: str = "conflict"):
        super().__init__(message, http_status=409)


class InvariantViolationError(AppError):
    """A well-formed request rejected to keep a tenant administrable."""

    def __init__(self, message: str, *, code: str):
        super().__init__(message, http_status=409)
        self.code = code


class UpstreamError(AppError):
    retryable = True

    def __init__(self, message: str = "the operation could not be completed, please try again"):
        super().__init__(message, http_status=503)


class RedirectRequired(AppError):
    """Raised by route guards; the app turns it into a redirect."""

    def __init__(self, location: str):
        super().__init__(f"redirect to {location}", http_status=303)
        self.location = location
