"""
Custom exception classes for the Bitbucket to GitHub export tool.
"""

from __future__ import annotations


class ExportError(Exception):
    """Base exception for export errors."""


class ConfigurationError(ExportError):
    """Raised when credentials or options are invalid before any network call."""


class APIError(ExportError):
    """Raised when the Bitbucket API returns an unusable response."""

    status_code: int | None
    body: str

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthenticationError(APIError):
    """Raised when the API rejects the configured credentials (HTTP 401/403)."""


class NotFoundError(APIError):
    """Raised when the requested resource does not exist (HTTP 404)."""


class RateLimitExhaustedError(APIError):
    """Raised when HTTP 429 responses persist after all retries."""

    attempts: int

    def __init__(self, message: str, *, attempts: int, body: str = "") -> None:
        super().__init__(message, status_code=429, body=body)
        self.attempts = attempts


class TransientFetchError(APIError):
    """Raised for failed fetches that callers may degrade on (network errors, 5xx, unexpected status)."""


class ResponseDecodeError(TransientFetchError):
    """Raised when a response body is not valid JSON."""


class CloneError(ExportError):
    """Raised when mirroring the git repository fails."""


class ValidationError(ExportError):
    """Raised when exported data or refs fail validation."""


class InvalidReferenceError(ValidationError):
    """Raised when a branch name cannot safely be written to a ref file."""


class MaterializationError(ExportError):
    """Raised when not even an empty bare repository can be created."""
