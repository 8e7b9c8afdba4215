"""HTTP clients that route requests through the cache and rate limiter."""

from .client import BaseApiClient
from .dataforseo import DataForSeoApiClient, safe_get_result

__all__ = ["BaseApiClient", "DataForSeoApiClient", "safe_get_result"]
