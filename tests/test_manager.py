"""
Tests for the cache manager facade: cache keys, storing API results and the
rate limit delegates.
"""

import hashlib
import json

import pytest

from apicache.cache.entries import ApiResult
from apicache.cache.manager import build_cache_manager
from apicache.exceptions import RateLimitExceeded, ValidationError
from apicache.ratelimit.stores import MemoryCounterStore


def api_result(body='{"ok": true}', status=200, cost=None) -> ApiResult:
    return ApiResult(
        request={
            "base_url": "https://demo.example.com",
            "full_url": "https://demo.example.com/users?page=1",
            "method": "GET",
            "headers": {"accept": "application/json"},
            "body": "",
        },
        response_body=body,
        response_status_code=status,
        response_headers={"content-type": "application/json"},
        response_size=len(body),
        response_time=0.1,
        cost=cost,
    )


# =============================================================================
# CACHE KEYS
# =============================================================================

class TestCacheKeys:

    def test_format(self, manager):
        key = manager.generate_cache_key("demo", "/users", {"page": 1}, "GET", "v2")
        expected_hash = hashlib.sha1(json.dumps({"page": 1}, separators=(",", ":")).encode()).hexdigest()
        assert key == f"demo.get.users.{expected_hash}.v2"

    def test_no_version(self, manager):
        key = manager.generate_cache_key("demo", "users", {"page": 1})
        assert key.startswith("demo.get.users.")
        assert key.count(".") == 3

    def test_param_order_ignored(self, manager):
        a = manager.generate_cache_key("demo", "/users", {"page": 1, "sort": "name", "filter": {"x": 1, "y": 2}})
        b = manager.generate_cache_key("demo", "/users", {"filter": {"y": 2, "x": 1}, "sort": "name", "page": 1})
        assert a == b

    def test_none_values_ignored(self, manager):
        assert manager.generate_cache_key("demo", "/users", {"page": 1, "q": None}) == (
            manager.generate_cache_key("demo", "/users", {"page": 1})
        )

    def test_distinguishes_inputs(self, manager):
        base = manager.generate_cache_key("demo", "/users", {"page": 1})
        assert base != manager.generate_cache_key("demo", "/users", {"page": 2})
        assert base != manager.generate_cache_key("demo", "/users", {"page": 1}, method="POST")
        assert base != manager.generate_cache_key("demo", "/posts", {"page": 1})
        assert base != manager.generate_cache_key("demo", "/users", {"page": 1}, version="v1")

    def test_missing_params_same_as_empty(self, manager):
        assert manager.generate_cache_key("demo", "/users") == manager.generate_cache_key("demo", "/users", {})

    def test_invalid_client(self, manager):
        with pytest.raises(ValidationError):
            manager.generate_cache_key("demo client", "/users")


# =============================================================================
# STORING RESULTS
# =============================================================================

class TestStoreResponse:

    def test_store_and_fetch(self, manager):
        key = manager.generate_cache_key("demo", "/users", {"page": 1})
        manager.store_response("demo", key, {"page": 1}, api_result(cost=0.5), "/users", version="v1",
                               attributes="page one", credits=2)

        cached = manager.get_cached_response("demo", key)
        assert cached.is_cached
        assert cached.is_success
        assert cached.response_body == '{"ok": true}'
        assert cached.cost == 0.5
        assert cached.request["full_url"] == "https://demo.example.com/users?page=1"
        assert cached.request["attributes"] == "page one"
        assert cached.request["credits"] == 2

        entry = manager.get("demo", key)
        assert entry.version == "v1"
        assert json.loads(entry.request_params_summary) == {"page": 1}

    def test_client_ttl_applied(self, manager, config, clock):
        config.clients["demo"].cache_ttl = 30
        manager.store_response("demo", "k", {}, api_result(), "/users")

        clock.advance(31)
        assert manager.get_cached_response("demo", "k") is None

    def test_explicit_ttl(self, manager, clock):
        manager.store_response("demo", "k", {}, api_result(), "/users", ttl=10)
        clock.advance(10)
        assert manager.get("demo", "k") is None

    def test_miss(self, manager):
        assert manager.get_cached_response("demo", "nope") is None


# =============================================================================
# RATE LIMITING
# =============================================================================

class TestRateLimitDelegates:

    def test_check_and_increment(self, manager):
        assert manager.check_rate_limit("demo") is None
        for _ in range(3):
            manager.increment_attempts("demo")

        assert not manager.allow_request("demo")
        assert manager.get_remaining_attempts("demo") == 0
        assert isinstance(manager.check_rate_limit("demo"), RateLimitExceeded)
        assert manager.get_available_in("demo") == 60

        manager.clear_rate_limit("demo")
        assert manager.allow_request("demo")


# =============================================================================
# WIRING
# =============================================================================

class TestBuildCacheManager:

    def test_wires_components(self, config, engine):
        store = MemoryCounterStore()
        manager = build_cache_manager(config, engine, counter_store=store)

        assert manager.repository.engine is engine
        assert manager.rate_limiter.store is store
        assert manager.get_table_name("demo_compressed").endswith("_compressed")


# =============================================================================
# END TO END
# =============================================================================

class TestDemoScenario:
    """Plain client: miss, store, hit, then rate limited."""

    def test_request_flow(self, manager, repository):
        key = manager.generate_cache_key("demo", "/users", {"page": 1})
        assert manager.check_rate_limit("demo") is None
        assert manager.get_cached_response("demo", key) is None

        manager.store_response("demo", key, {"page": 1}, api_result(), "/users")
        manager.increment_attempts("demo")

        assert manager.get_cached_response("demo", key).is_cached
        assert repository.count_total_responses("demo") == 1
        assert manager.get_remaining_attempts("demo") == 2

        manager.increment_attempts("demo", amount=2)
        denial = manager.check_rate_limit("demo")
        assert denial.available_in_seconds == 60


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
