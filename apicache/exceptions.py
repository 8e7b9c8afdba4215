"""
Exception hierarchy for the cache, rate limiter and response processors.
"""

from typing import Optional


class ApiCacheError(Exception):
    """Base exception for all api-cache errors."""


class ValidationError(ApiCacheError, ValueError):
    """Invalid input: missing store() fields, bad identifiers, unsupported params."""


class MalformedDataError(ApiCacheError):
    """A stored payload decoded to an unexpected shape."""


class DecompressionError(MalformedDataError):
    """A stored blob is corrupt or was never compressed."""


class RateLimitExceeded(ApiCacheError):
    """
    Raised (or returned) when a client has used up its attempts for the window.

    Callers catch this to back off for ``available_in_seconds``.
    """

    status_code = 429

    def __init__(self, client: str, available_in_seconds: int):
        self.client = client
        self.available_in_seconds = available_in_seconds
        super().__init__(
            f"Rate limit exceeded for client '{client}'. "
            f"Please try again in {available_in_seconds} seconds."
        )


class ETLRowError(ApiCacheError):
    """A single cached response could not be processed."""

    def __init__(self, message: str, response_id: Optional[int] = None):
        super().__init__(message)
        self.response_id = response_id
