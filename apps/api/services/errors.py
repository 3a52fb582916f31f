"""Typed failures raised by credential services.

Every error carries the HTTP status it maps to and a stable public message.
The detailed message (and the lifecycle stage, when one applies) is for logs
only; callers only ever see ``public_message``.
"""

from __future__ import annotations

from typing import Optional


class CredentialServiceError(Exception):
    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str = "", *, stage: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        self.stage = stage


class AuthFailure(CredentialServiceError):
    """Raised when the caller's bearer token is missing, malformed or invalid."""

    status_code = 401
    public_message = "Unauthorized"

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 401,
        public_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        if public_message:
            self.public_message = public_message


class ConfigurationError(CredentialServiceError):
    """Raised when a required secret or credential is not configured."""

    public_message = "Service configuration error"


class UpstreamProviderError(CredentialServiceError):
    """Raised when the key provider answers with a failure or cannot be reached."""

    status_code = 503
    public_message = "Upstream provider unavailable"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: str = "",
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message, stage=stage)
        self.status = status
        self.body = body


class ProviderKeyNotFound(UpstreamProviderError):
    """Raised when the provider reports that a key handle no longer exists."""


class StorageError(CredentialServiceError):
    """Raised when the credential store cannot read or write a record."""


class InvariantViolation(CredentialServiceError):
    """Raised when a provider response lacks fields the lifecycle depends on."""

    public_message = "Invalid response from upstream provider"
