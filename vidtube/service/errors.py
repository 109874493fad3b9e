from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable error codes carried in the error envelope's ``code`` field."""

    VALIDATION = "validation_error"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID_CREDENTIALS = "invalid_credentials"
    UNAUTHORIZED = "unauthorized"
    INVALID_TOKEN = "invalid_token"
    TOKEN_REUSED = "token_reused"
    INTERNAL = "internal_error"


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and an ``ErrorKind``; the API
    layer renders both into the error envelope.
    """

    status_code: int = 400
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail or {}

    @property
    def error_code(self) -> str:
        return self.kind.value


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    kind = ErrorKind.VALIDATION


class ConflictError(ServiceError):
    """Username or email already taken (409)."""
    status_code = 409
    kind = ErrorKind.CONFLICT


class NotFoundError(ServiceError):
    status_code = 404
    kind = ErrorKind.NOT_FOUND


class InvalidCredentialsError(ServiceError):
    """Password did not match (401)."""
    status_code = 401
    kind = ErrorKind.INVALID_CREDENTIALS


class UnauthorizedError(ServiceError):
    """Missing or unusable access credentials (401)."""
    status_code = 401
    kind = ErrorKind.UNAUTHORIZED


class InvalidTokenError(ServiceError):
    """Token signature, expiry or type check failed (401)."""
    status_code = 401
    kind = ErrorKind.INVALID_TOKEN


class TokenReusedError(ServiceError):
    """Renewal token no longer matches the one stored for the account (401)."""
    status_code = 401
    kind = ErrorKind.TOKEN_REUSED


class ServerError(ServiceError):
    status_code = 500
    kind = ErrorKind.INTERNAL


__all__ = [
    "ErrorKind",
    "ServiceError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "InvalidCredentialsError",
    "UnauthorizedError",
    "InvalidTokenError",
    "TokenReusedError",
    "ServerError",
]
