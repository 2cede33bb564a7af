"""Domain error taxonomy shared by the repositories, services and HTTP layer.

Repositories translate backend-native failures into these classes at their
boundary; the service layer and the HTTP layer only ever look at
:class:`DomainError` and its ``code``. Each code maps to a stable HTTP status
through :func:`http_status_for`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes exposed to clients."""

    VALIDATION = "VALIDATION_ERROR"
    INVALID = "INVALID_VALUE"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INTERNAL = "INTERNAL_ERROR"
    DATABASE = "DATABASE_ERROR"


HTTP_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: 400,
    ErrorCode.INVALID: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.INVALID_PASSWORD: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.INTERNAL: 500,
    ErrorCode.DATABASE: 500,
}


class DomainError(Exception):
    """Base class for every error the service reports to its callers.

    Attributes
    ----------
    code:
        One of :class:`ErrorCode`; never replaced by backend detail.
    message:
        Human readable summary.
    details:
        Optional diagnostic text, e.g. the raw driver error.
    """

    code: ErrorCode = ErrorCode.INTERNAL
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[str] = None,
        code: Optional[ErrorCode] = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        if code is not None:
            self.code = code
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code.value!r} message={self.message!r}>"


class ValidationError(DomainError):
    """Invalid input, optionally bound to a single field."""

    code = ErrorCode.VALIDATION
    default_message = "Validation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        field: Optional[str] = None,
        details: Optional[str] = None,
        code: Optional[ErrorCode] = None,
    ) -> None:
        self.field = field
        if field is not None:
            message = f"Validation failed for field '{field}': {message or 'invalid value'}"
            details = details or f"field={field}"
        super().__init__(message, details=details, code=code)


class UnauthorizedError(DomainError):
    code = ErrorCode.UNAUTHORIZED
    default_message = "Unauthorized"


class InvalidTokenError(DomainError):
    code = ErrorCode.INVALID_TOKEN
    default_message = "Invalid token"


class InvalidPasswordError(DomainError):
    code = ErrorCode.INVALID_PASSWORD
    default_message = "Invalid password"


class ForbiddenError(DomainError):
    code = ErrorCode.FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    default_message = "User not found"


class AlreadyExistsError(DomainError):
    code = ErrorCode.ALREADY_EXISTS
    default_message = "User already exists"


class StorageError(DomainError):
    """A backend failure that is not one of the classified kinds."""

    code = ErrorCode.DATABASE
    default_message = "Database error"

    @classmethod
    def wrap(cls, exc: BaseException, message: str) -> "StorageError":
        return cls(message, details=str(exc))


class InternalError(DomainError):
    code = ErrorCode.INTERNAL
    default_message = "Internal server error"


class ConfigurationError(Exception):
    """Raised when settings or the database wiring are unusable."""


class MigrationError(Exception):
    """A migration's forward action (or its ledger write) failed."""

    def __init__(self, version: str, cause: BaseException, *, stage: str = "up") -> None:
        self.version = version
        self.cause = cause
        self.stage = stage
        if stage == "record":
            text = f"failed to record migration {version}: {cause}"
        else:
            text = f"migration {version} failed: {cause}"
        super().__init__(text)


def http_status_for(exc: BaseException) -> int:
    """Return the HTTP status signal for ``exc``; anything unknown is a 500."""
    if isinstance(exc, DomainError):
        return exc.status_code
    return 500
