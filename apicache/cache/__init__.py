"""
Response Cache

Key components:
- CompressionService: LZ4/ZSTD payload compression with format markers
- CacheRepository: per-client response tables, TTL expiry, cleanup
- ApiCacheManager: cache keys + repository + rate limiter behind one facade
- ResponsesTableConverter: move a client's rows between compressed and
  uncompressed tables

Usage:
    manager = build_cache_manager(get_config(), engine)
    key = manager.generate_cache_key("demo", "/users", {"page": 1})
    cached = manager.get_cached_response("demo", key)
"""

from apicache.cache.compression import CompressionService, CompressionStats
from apicache.cache.converter import ResponsesTableConverter
from apicache.cache.entries import ApiResult, CacheEntry, ResponseMetadata
from apicache.cache.manager import ApiCacheManager, build_cache_manager
from apicache.cache.repository import CacheRepository

__all__ = [
    "CompressionService",
    "CompressionStats",
    "ResponsesTableConverter",
    "ApiResult",
    "CacheEntry",
    "ResponseMetadata",
    "ApiCacheManager",
    "build_cache_manager",
    "CacheRepository",
]
