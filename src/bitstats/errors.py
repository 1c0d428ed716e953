"""Custom exception types for bitstats."""

from typing import Optional


class BitstatsError(Exception):
    """Base exception for all bitstats errors."""


class ConfigurationError(BitstatsError):
    """Raised when credentials, tokens, paths, or repository names are missing or invalid."""


class SyncInProgressError(ConfigurationError):
    """Raised when another sync already holds the cache lock for a repository."""


class AuthenticationError(BitstatsError):
    """Raised when Bitbucket rejects the stored credentials or refresh token."""


class AuthExhaustedError(AuthenticationError):
    """Raised when a request is still unauthorized after the allowed token refreshes."""


class ApiError(BitstatsError):
    """Raised when a Bitbucket API request fails or returns an unexpected response."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class NotFoundError(ApiError):
    """Raised when a Bitbucket resource returns HTTP 404."""


class ExportError(BitstatsError):
    """Raised when exported data cannot be written to disk."""
