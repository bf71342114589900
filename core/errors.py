"""
core/errors.py -- Error taxonomy shared by the auth services and the API layer.

Every class carries an HTTP status_code and a stable machine-readable code.
Services raise these; api/main.py renders them into the standard error
envelope. Nothing in auth/ imports fastapi to signal an error.

  ValidationError      400  validation_error  malformed or missing input
  AuthenticationError  401  unauthorized      no/invalid/expired token, bad credentials
  AuthorizationError   403  forbidden         valid identity, insufficient permission
  NotFoundError        404  not_found         referenced entity absent
  ConflictError        409  conflict          uniqueness or invariant violation
  InternalError        500  internal_error    storage or unexpected failure

AuthenticationError keeps two messages apart: `message` is what the caller
sees (always generic), `reason` is what the server logs.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(AppError):
    """Input failed validation. `fields` maps field name -> message."""

    status_code = 400
    code = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        fields: Optional[dict[str, str]] = None,
        detail: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.fields = fields or {}


class AuthenticationError(AppError):
    """Identity could not be established.

    reason is one of the REASON_* constants and is only ever logged.
    """

    status_code = 401
    code = "unauthorized"

    REASON_MISSING = "missing"
    REASON_MALFORMED = "malformed"
    REASON_BAD_SIGNATURE = "bad_signature"
    REASON_EXPIRED = "expired"
    REASON_BAD_CREDENTIALS = "bad_credentials"
    REASON_REFRESH_INVALID = "refresh_invalid"
    REASON_REFRESH_EXPIRED = "refresh_expired"
    REASON_USER_GONE = "user_gone"

    def __init__(self, message: str, *, reason: str = "", detail: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message, detail=detail)
        self.reason = reason or message


class AuthorizationError(AppError):
    status_code = 403
    code = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class InternalError(AppError):
    status_code = 500
    code = "internal_error"


__all__ = [
    "AppError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "InternalError",
]
