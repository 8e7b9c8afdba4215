"""
API Cache Manager

One interface over the cache repository and the rate limiter, plus cache
key derivation. The manager keeps no state of its own; every call delegates.

Request path driven by API clients:
    check_rate_limit -> generate_cache_key -> get_cached_response
        hit:  return cached result
        miss: call API -> store_response -> increment_attempts
"""

import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Optional, Union

from sqlalchemy.engine import Engine

from apicache.cache.compression import CompressionService
from apicache.cache.entries import ApiResult, CacheEntry, ResponseMetadata
from apicache.cache.repository import CacheRepository
from apicache.database.session import create_db_engine
from apicache.exceptions import RateLimitExceeded
from apicache.ratelimit.service import RateLimitService
from apicache.ratelimit.stores import CounterStore, build_counter_store
from apicache.utils.config import ApiCacheConfig
from apicache.utils.params import normalize_params, summarize_params, validate_identifier

logger = logging.getLogger(__name__)


class ApiCacheManager:
    """
    Facade combining CacheRepository and RateLimitService.

    Usage:
        manager = build_cache_manager(config, engine)
        key = manager.generate_cache_key("demo", "/users", {"page": 1})
        cached = manager.get_cached_response("demo", key)
    """

    def __init__(
        self,
        repository: CacheRepository,
        rate_limiter: RateLimitService,
        config: Optional[ApiCacheConfig] = None,
    ):
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.config = config or repository.config

    # =========================================================================
    # CACHE KEYS
    # =========================================================================

    def normalize_params(self, params: Any) -> Any:
        return normalize_params(params)

    def generate_cache_key(
        self,
        client: str,
        endpoint: str,
        params: Union[Dict[str, Any], list, None] = None,
        method: str = "GET",
        version: Optional[str] = None,
    ) -> str:
        """
        Deterministic key for one request.

        Format: {client}.{method}.{endpoint}.{sha1 of normalized params}[.{version}]
        Parameter order does not affect the key.
        """
        validate_identifier(client)
        normalized = normalize_params(params if params is not None else {})
        encoded = json.dumps(normalized, ensure_ascii=False, separators=(",", ":"))
        params_hash = hashlib.sha1(encoded.encode("utf-8")).hexdigest()

        key = f"{client}.{method.lower()}.{endpoint.lstrip('/')}.{params_hash}"
        if version:
            key += f".{version}"
        return key

    # =========================================================================
    # STORAGE
    # =========================================================================

    def store_response(
        self,
        client: str,
        key: str,
        params: Any,
        api_result: ApiResult,
        endpoint: str,
        version: Optional[str] = None,
        ttl: Optional[int] = None,
        attributes: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> None:
        """
        Store a fresh API result.

        ttl defaults to the client's cache_ttl. A request_params_summary is
        derived from params.
        """
        if ttl is None:
            ttl = self.config.get_client(client).cache_ttl

        request = api_result.request or {}
        metadata = ResponseMetadata(
            endpoint=endpoint,
            version=version,
            base_url=request.get("base_url"),
            full_url=request.get("full_url"),
            method=request.get("method"),
            attributes=attributes,
            credits=credits,
            cost=api_result.cost,
            request_params_summary=summarize_params(params) if params else None,
            request_headers=request.get("headers"),
            request_body=request.get("body"),
            response_headers=api_result.response_headers,
            response_body=api_result.response_body,
            response_status_code=api_result.response_status_code,
            response_size=api_result.response_size,
            response_time=api_result.response_time,
        )
        self.repository.store(client, key, metadata, ttl)

    def store(
        self,
        client: str,
        key: str,
        metadata: Union[ResponseMetadata, Mapping[str, Any]],
        ttl: Optional[int] = None,
    ) -> None:
        self.repository.store(client, key, metadata, ttl)

    def get(self, client: str, key: str) -> Optional[CacheEntry]:
        return self.repository.get(client, key)

    def get_cached_response(self, client: str, key: str) -> Optional[ApiResult]:
        entry = self.repository.get(client, key)
        if entry is None:
            return None
        return ApiResult.from_entry(entry)

    def get_table_name(self, client: str, compressed: Optional[bool] = None) -> str:
        return self.repository.get_table_name(client, compressed)

    def clear_table(self, client: str) -> int:
        return self.repository.clear_table(client)

    def delete_expired(self, client: str) -> int:
        return self.repository.delete_expired(client)

    def cleanup(self, client: Optional[str] = None) -> Dict[str, int]:
        return self.repository.cleanup(client)

    # =========================================================================
    # RATE LIMITING
    # =========================================================================

    def allow_request(self, client: str) -> bool:
        return self.rate_limiter.allow_request(client)

    def check_rate_limit(self, client: str) -> Optional[RateLimitExceeded]:
        return self.rate_limiter.check(client)

    def increment_attempts(self, client: str, amount: int = 1) -> int:
        return self.rate_limiter.increment_attempts(client, amount)

    def get_remaining_attempts(self, client: str) -> int:
        return self.rate_limiter.get_remaining_attempts(client)

    def get_available_in(self, client: str) -> int:
        return self.rate_limiter.get_available_in(client)

    def clear_rate_limit(self, client: str) -> None:
        self.rate_limiter.clear(client)


def build_cache_manager(
    config: ApiCacheConfig,
    engine: Optional[Engine] = None,
    counter_store: Optional[CounterStore] = None,
) -> ApiCacheManager:
    """Wire compression, repository and rate limiter from one config object."""
    if engine is None:
        engine = create_db_engine(settings=config.settings)

    compression = CompressionService(config)
    repository = CacheRepository(engine, compression, config)
    store = counter_store or build_counter_store(config.settings, engine)
    rate_limiter = RateLimitService(store, config)
    return ApiCacheManager(repository, rate_limiter, config)
