"""
Base API Client

Synchronous httpx client that routes every request through the cache and
rate limiter:

    check rate limit -> cache key -> cached? return it
                     -> send request -> store (if cacheable) -> count attempt

Failed requests and rejected responses are written to api_cache_errors so
they can be reviewed later.
"""

import json
import logging
import time
from typing import Any, Dict, Optional, Union

import httpx

from apicache.cache.entries import ApiResult
from apicache.cache.manager import ApiCacheManager
from apicache.database.models import ApiCacheErrorLog, utcnow
from apicache.database.session import get_db_context
from apicache.exceptions import RateLimitExceeded
from apicache.utils.config import ClientConfig

logger = logging.getLogger(__name__)

RESPONSE_PREVIEW_LENGTH = 2000
MAX_ATTRIBUTES_LENGTH = 255

BODY_METHODS = ("POST", "PUT", "PATCH")
SUPPORTED_METHODS = ("GET", "HEAD", "DELETE") + BODY_METHODS

Params = Union[Dict[str, Any], list, None]


class BaseApiClient:
    """
    Cached, rate limited HTTP client for one upstream API.

    Usage:
        with BaseApiClient("demo", manager) as client:
            result = client.send_cached_request("users", {"page": 1})

    Subclasses override get_auth_headers(), get_auth_params(),
    calculate_cost() and should_cache() for their API.
    """

    def __init__(
        self,
        client_name: str,
        manager: ApiCacheManager,
        config: Optional[ClientConfig] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 60.0,
        use_cache: bool = True,
    ):
        self.client_name = client_name
        self.manager = manager
        self.config = config or manager.config.get_client(client_name)
        self.base_url = (self.config.base_url or "").rstrip("/")
        self.version = self.config.version
        self.use_cache = use_cache
        self.error_logging_enabled = manager.config.settings.error_logging_enabled

        self._client = http_client or httpx.Client(timeout=httpx.Timeout(timeout))
        self._owns_client = http_client is None

    def close(self):
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # =========================================================================
    # HOOKS
    # =========================================================================

    def get_auth_headers(self) -> Dict[str, str]:
        if self.config.api_key:
            return {"Authorization": f"Bearer {self.config.api_key}"}
        return {}

    def get_auth_params(self) -> Dict[str, Any]:
        return {}

    def calculate_cost(self, response_body: Optional[str]) -> Optional[float]:
        return None

    def should_cache(self, response_body: Optional[str]) -> bool:
        return True

    def build_url(self, endpoint: str, path_suffix: Optional[str] = None) -> str:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        if path_suffix is not None:
            url += "/" + path_suffix.lstrip("/")
        return url

    # =========================================================================
    # ERROR LOG
    # =========================================================================

    def log_api_error(
        self,
        error_type: str,
        message: Optional[str],
        context: Optional[Dict[str, Any]] = None,
        response: Optional[str] = None,
        api_message: Optional[str] = None,
        log_level: str = "error",
    ) -> None:
        """
        Record an API error in api_cache_errors.

        Failures to write the log are reported through logging only; they
        never replace the original error.
        """
        logger.log(
            logging.getLevelName(log_level.upper()),
            f"{self.client_name} {error_type}: {message}",
        )
        if not self.error_logging_enabled:
            return

        try:
            with get_db_context(self.manager.repository.engine) as db:
                db.add(ApiCacheErrorLog(
                    api_client=self.client_name,
                    error_type=error_type,
                    log_level=log_level,
                    error_message=message,
                    api_message=api_message,
                    response_preview=response[:RESPONSE_PREVIEW_LENGTH] if response is not None else None,
                    context_data=json.dumps(context, indent=4, default=str) if context else None,
                    created_at=utcnow(),
                ))
        except Exception as e:
            logger.error(f"Failed to log API error for {self.client_name}: {e}")

    def log_http_error(
        self,
        status_code: int,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        response: Optional[str] = None,
    ) -> None:
        self.log_api_error(
            "http_error",
            message or "HTTP error",
            {"status_code": status_code, **(context or {})},
            response,
        )

    def log_cache_rejected(
        self,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        response: Optional[str] = None,
    ) -> None:
        self.log_api_error("cache_rejected", message or "Cache rejected", context, response, log_level="warning")

    # =========================================================================
    # REQUESTS
    # =========================================================================

    def send_request(
        self,
        endpoint: str,
        params: Params = None,
        method: str = "GET",
        attributes: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> ApiResult:
        """
        Send one request, bypassing cache and rate limiter.

        Query string for GET/HEAD/DELETE, JSON body for POST/PUT/PATCH.

        Raises:
            ValueError: unsupported method
            httpx.HTTPError: transport failures
        """
        method = method.upper()
        if method not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        url = self.build_url(endpoint)
        auth_params = self.get_auth_params()
        if isinstance(params, list):
            payload: Any = params
        else:
            # None values are left out, as they are for cache keys
            payload = {k: v for k, v in {**auth_params, **(params or {})}.items() if v is not None}

        logger.debug(f"Sending {method} {url} for {self.client_name}")
        start = time.perf_counter()

        if method in BODY_METHODS:
            response = self._client.request(
                method, url, json=payload, params=auth_params if isinstance(payload, list) else None,
                headers=self.get_auth_headers(),
            )
        else:
            response = self._client.request(method, url, params=payload, headers=self.get_auth_headers())

        response_time = time.perf_counter() - start
        body = response.text

        logger.debug(
            f"{self.client_name} responded {response.status_code} in {response_time:.3f}s"
        )

        return ApiResult(
            request={
                "base_url": self.base_url,
                "full_url": str(response.request.url),
                "method": response.request.method,
                "attributes": attributes,
                "credits": credits,
                "headers": dict(response.request.headers),
                "body": response.request.content.decode("utf-8", errors="replace"),
            },
            response_body=body,
            response_status_code=response.status_code,
            response_headers=dict(response.headers),
            response_size=len(response.content),
            response_time=response_time,
            is_cached=False,
            cost=self.calculate_cost(body),
        )

    def send_cached_request(
        self,
        endpoint: str,
        params: Params = None,
        method: str = "GET",
        attributes: Optional[str] = None,
        amount: int = 1,
    ) -> ApiResult:
        """
        Cached request path.

        Raises:
            RateLimitExceeded: no attempts left, carries available_in_seconds
            httpx.HTTPError: transport failures, after logging
        """
        denial = self.manager.check_rate_limit(self.client_name)
        if denial is not None:
            raise denial
        return self._cached_request(endpoint, params, method, attributes, amount)

    def try_cached_request(
        self,
        endpoint: str,
        params: Params = None,
        method: str = "GET",
        attributes: Optional[str] = None,
        amount: int = 1,
    ) -> Union[ApiResult, RateLimitExceeded]:
        """
        Same as send_cached_request(), but a rate limit denial is returned
        instead of raised so callers can branch on it.
        """
        denial = self.manager.check_rate_limit(self.client_name)
        if denial is not None:
            return denial
        return self._cached_request(endpoint, params, method, attributes, amount)

    def _cached_request(
        self,
        endpoint: str,
        params: Params,
        method: str,
        attributes: Optional[str],
        amount: int,
    ) -> ApiResult:
        cache_key = self.manager.generate_cache_key(
            self.client_name, endpoint, params, method, self.version
        )

        if self.use_cache:
            cached = self.manager.get_cached_response(self.client_name, cache_key)
            if cached is not None:
                logger.debug(f"Cache used for {self.client_name} {endpoint} ({cache_key})")
                return cached
            logger.debug(f"Cache not used for {self.client_name} {endpoint} ({cache_key})")

        if attributes is not None:
            attributes = attributes[:MAX_ATTRIBUTES_LENGTH]

        context = {"url": self.build_url(endpoint), "method": method, "cache_key": cache_key}
        try:
            result = self.send_request(endpoint, params, method, attributes, amount)
        except httpx.HTTPError as e:
            self.log_http_error(
                0,
                f"Connection error: {e}",
                {**context, "error_type": "connection_error"},
            )
            raise

        try:
            if not result.is_success:
                self.log_http_error(
                    result.response_status_code,
                    "API request failed",
                    {**context, "url": result.request.get("full_url")},
                    result.response_body,
                )
            elif not self.use_cache:
                logger.debug(f"Caching disabled for {self.client_name} {endpoint}")
            elif self.should_cache(result.response_body):
                self.manager.store_response(
                    self.client_name,
                    cache_key,
                    params,
                    result,
                    endpoint,
                    version=self.version,
                    attributes=attributes,
                    credits=amount,
                )
            else:
                self.log_cache_rejected(
                    "Response rejected by should_cache()",
                    context,
                    result.response_body,
                )
        finally:
            self.manager.increment_attempts(self.client_name, amount)

        return result

    def clear_rate_limit(self) -> None:
        self.manager.clear_rate_limit(self.client_name)

    def clear_table(self) -> int:
        return self.manager.clear_table(self.client_name)
