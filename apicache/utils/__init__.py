"""Configuration and parameter helpers."""

from apicache.utils.config import (
    ApiCacheConfig,
    ClientConfig,
    Settings,
    get_config,
    get_settings,
)
from apicache.utils.params import (
    normalize_params,
    summarize_params,
    validate_identifier,
)

__all__ = [
    "ApiCacheConfig",
    "ClientConfig",
    "Settings",
    "get_config",
    "get_settings",
    "normalize_params",
    "summarize_params",
    "validate_identifier",
]
