from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code``
    that clients can branch on:

    - validation_error (400)
    - duplicate_identity (400)
    - invalid_credentials (401)
    - invalid_token (401)
    - unauthorized (401)
    - not_found (404)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Malformed or out-of-range input (400)."""
    status_code = 400
    error_code = "validation_error"


class DuplicateIdentity(ServiceError):
    """An identity with this email already exists (400)."""
    status_code = 400
    error_code = "duplicate_identity"


class InvalidCredentials(ServiceError):
    """Unknown email or wrong password (401).

    Both cases share one message so callers cannot probe which emails exist.
    """
    status_code = 401
    error_code = "invalid_credentials"


class InvalidToken(ServiceError):
    """Expired, malformed, mis-signed or rotated-out token (401)."""
    status_code = 401
    error_code = "invalid_token"


class Unauthorized(ServiceError):
    """Protected route called without a usable access token (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "DuplicateIdentity",
    "InvalidCredentials",
    "InvalidToken",
    "Unauthorized",
    "NotFoundError",
    "ServerError",
]
