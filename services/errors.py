"""
Auth error taxonomy.

Every error carries the code, HTTP status and public message used by the
error envelope in api/errors.py. Subclasses that must look identical to the
caller (replay, expiry) share their parent's code and message; the
distinction only shows up in logs.
"""
from __future__ import annotations


class AuthError(Exception):
    error = "UNAUTHORIZED"
    status = 401
    message = "Unauthorized"

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details


class InvalidCredentials(AuthError):
    error = "INVALID_CREDENTIALS"
    message = "Invalid username or password."


class Unauthorized(AuthError):
    error = "UNAUTHORIZED"
    message = "Invalid or expired token."


class ReuseOrTamperDetected(Unauthorized):
    """Refresh token had a valid signature but no stored record."""


class RefreshTokenExpired(Unauthorized):
    """Stored refresh record was past its expiry when consumed."""


class DuplicateError(AuthError):
    error = "CONFLICT"
    status = 409

    def __init__(self, field: str):
        super().__init__(f"{field.capitalize()} already exists.", details={"field": field})
        self.field = field


class InvalidOrExpiredToken(AuthError):
    error = "INVALID_TOKEN"
    status = 400
    message = "Invalid or expired password reset token."


class InternalError(AuthError):
    error = "INTERNAL_ERROR"
    status = 500
    message = "An unexpected error occurred"
