"""
Domain errors.

Services raise these; the exception handlers registered in ``main.py`` turn
them into JSON responses of the form ``{"detail": message, ...}``.
"""
from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message}


class ValidationError(AppError):
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.errors:
            body["errors"] = self.errors
        return body


class ConflictError(ValidationError):
    """Uniqueness violation, e.g. a duplicate email or SKU."""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"{field} already exists", errors=[{"field": field, "message": "already exists"}])
        self.field = field


class AuthenticationError(AppError):
    status_code = 401


class PermissionDeniedError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class AccountLockedError(AppError):
    status_code = 423


class RateLimitExceededError(AppError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "retry_after": self.retry_after}
