"""Exceptions raised by the GHIN handicap service.

Transport failures are not wrapped: they surface as ``httpx.HTTPError``.
"""

from __future__ import annotations

from typing import Optional


class HandicapError(Exception):
    """Base exception for handicap service errors."""


class GhinAPIError(HandicapError):
    """Raised when the GHIN API answers with an unusable status code."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"API Error {status_code}: {message}")


class AuthenticationError(GhinAPIError):
    """Raised when the GHIN API returns a 401 response."""

    def __init__(self, message: str = "Invalid or expired token."):
        super().__init__(401, message)


class BadRequestError(GhinAPIError):
    """Raised when the GHIN API returns a 400 response. Never retried."""

    def __init__(self, operation: str, body: str = ""):
        self.operation = operation
        self.body = body
        message = f"bad request for {operation}"
        if body:
            message = f"{message}: {body}"
        super().__init__(400, message)


class UnknownStatusError(GhinAPIError):
    """Raised for any status the service does not expect."""

    def __init__(self, status_code: int, operation: str):
        self.operation = operation
        super().__init__(status_code, f"Unknown {operation} error")


class RetryExhaustedError(HandicapError):
    """Raised when an operation keeps failing authorization after a token refresh."""

    def __init__(self, operation: str, attempts: Optional[int] = None):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"Too many unsuccessful attempts to {operation}.")


class EmptyResultError(HandicapError):
    """Raised when a single-golfer search returns no rows."""


class UnknownSourceError(HandicapError):
    """Raised for a handicap source with no registered provider."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"unknown handicap source: '{source}'")


class LoginError(HandicapError):
    """Raised when a login or attestation request fails or returns no token."""
