from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``
    that the API layer places in the error body.
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
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Bad credentials or no authenticated session (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidStateError(ServiceError):
    """SSO callback state is missing or does not match the session (400)."""
    status_code = 400
    error_code = "invalid_state"


class MissingCodeError(ServiceError):
    """SSO callback arrived without an authorization code (400)."""
    status_code = 400
    error_code = "missing_code"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class UpstreamProviderError(ServerError):
    """The identity provider could not be reached or returned garbage.

    The message is logged server-side; clients only see a generic body.
    """


class ProviderNotConfiguredError(ServerError):
    """Scalekit credentials are missing from the environment."""


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidStateError",
    "MissingCodeError",
    "ServerError",
    "UpstreamProviderError",
    "ProviderNotConfiguredError",
]
