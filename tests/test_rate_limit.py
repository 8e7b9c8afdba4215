"""
Tests for fixed-window rate limiting across the counter backends.
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from apicache.exceptions import ApiCacheError, RateLimitExceeded
from apicache.ratelimit.service import KEY_PREFIX, RateLimitService
from apicache.ratelimit.stores import (
    DatabaseCounterStore,
    MemoryCounterStore,
    RedisCounterStore,
    build_counter_store,
)
from apicache.utils.config import ApiCacheConfig, ClientConfig, Settings

THREADS = 8
INCREMENTS_PER_THREAD = 25


def increment_concurrently(store, key="k"):
    """Run THREADS workers that each increment key INCREMENTS_PER_THREAD times."""
    def worker():
        for _ in range(INCREMENTS_PER_THREAD):
            store.increment(key, 1, 60)

    with ThreadPoolExecutor(max_workers=THREADS) as pool:
        futures = [pool.submit(worker) for _ in range(THREADS)]
    # result() re-raises anything a worker raised
    for future in futures:
        future.result()


@pytest.fixture
def limiter(counter_store, config) -> RateLimitService:
    return RateLimitService(counter_store, config)


# =============================================================================
# SERVICE
# =============================================================================

class TestRateLimitService:
    """Window accounting with max_attempts=3, decay=60s."""

    def test_boundary(self, limiter):
        for _ in range(2):
            limiter.increment_attempts("demo")
        assert limiter.allow_request("demo")
        assert limiter.get_remaining_attempts("demo") == 1

        limiter.increment_attempts("demo")
        assert not limiter.allow_request("demo")
        assert limiter.get_remaining_attempts("demo") == 0

    def test_remaining_never_negative(self, limiter):
        limiter.increment_attempts("demo", amount=10)
        assert limiter.get_remaining_attempts("demo") == 0

    def test_allow_request_does_not_count(self, limiter):
        for _ in range(10):
            assert limiter.allow_request("demo")
        assert limiter.get_remaining_attempts("demo") == 3

    def test_window_resets(self, limiter, clock):
        limiter.increment_attempts("demo", amount=3)
        assert limiter.get_available_in("demo") == 60

        clock.advance(30)
        assert limiter.get_available_in("demo") == 30

        clock.advance(30)
        assert limiter.allow_request("demo")
        assert limiter.get_available_in("demo") == 0

    def test_available_in_zero_when_allowed(self, limiter):
        limiter.increment_attempts("demo")
        assert limiter.get_available_in("demo") == 0

    def test_clear(self, limiter):
        limiter.increment_attempts("demo", amount=3)
        limiter.clear("demo")
        assert limiter.get_remaining_attempts("demo") == 3

    def test_clients_isolated(self, limiter):
        limiter.increment_attempts("demo", amount=3)
        assert limiter.allow_request("demo_compressed")

    def test_check_returns_denial(self, limiter):
        assert limiter.check("demo") is None
        limiter.increment_attempts("demo", amount=3)

        denial = limiter.check("demo")
        assert isinstance(denial, RateLimitExceeded)
        assert denial.client == "demo"
        assert denial.available_in_seconds == 60
        assert denial.status_code == 429
        assert "Please try again in 60 seconds" in str(denial)

    @pytest.mark.parametrize("max_attempts", [None, -1])
    def test_unlimited(self, counter_store, max_attempts):
        config = ApiCacheConfig(clients={"free": ClientConfig(rate_limit_max_attempts=max_attempts)})
        limiter = RateLimitService(counter_store, config)
        limiter.increment_attempts("free", amount=10 ** 6)
        assert limiter.allow_request("free")
        assert limiter.get_remaining_attempts("free") == sys.maxsize

    def test_key_prefix(self, limiter):
        assert limiter.get_rate_limit_key("demo") == f"{KEY_PREFIX}demo"


# =============================================================================
# STORES
# =============================================================================

class TestMemoryCounterStore:

    def test_increment_returns_total(self, counter_store):
        assert counter_store.increment("k", 1, 60) == 1
        assert counter_store.increment("k", 2, 60) == 3
        assert counter_store.attempts("k") == 3

    def test_expired_window_starts_over(self, counter_store, clock):
        counter_store.increment("k", 5, 10)
        clock.advance(10)
        assert counter_store.attempts("k") == 0
        assert counter_store.increment("k", 1, 10) == 1

    def test_reads_do_not_modify_store(self, counter_store, clock):
        counter_store.increment("k", 5, 10)
        clock.advance(10)

        assert counter_store.attempts("k") == 0
        assert counter_store.available_in("k") == 0
        assert counter_store._counters["k"][0] == 5

    def test_concurrent_increments(self, counter_store):
        increment_concurrently(counter_store)
        assert counter_store.attempts("k") == THREADS * INCREMENTS_PER_THREAD


class TestDatabaseCounterStore:
    """api_cache_rate_limits backed counters."""

    @pytest.fixture
    def store(self, engine, clock):
        return DatabaseCounterStore(engine, clock=clock)

    def test_increment(self, store):
        assert store.increment("k", 1, 60) == 1
        assert store.increment("k", 2, 60) == 3
        assert store.attempts("k") == 3

    def test_window(self, store, clock):
        store.increment("k", 1, 60)
        clock.advance(15)
        assert store.available_in("k") == 45

        clock.advance(45)
        assert store.attempts("k") == 0
        assert store.available_in("k") == 0
        assert store.increment("k", 1, 60) == 1

    def test_clear(self, store):
        store.increment("k", 4, 60)
        store.clear("k")
        assert store.attempts("k") == 0

    def test_concurrent_increments(self, store):
        increment_concurrently(store)
        assert store.attempts("k") == THREADS * INCREMENTS_PER_THREAD

    def test_with_service(self, store, config):
        limiter = RateLimitService(store, config)
        limiter.increment_attempts("demo", amount=3)
        assert not limiter.allow_request("demo")
        assert limiter.check("demo").available_in_seconds == 60


class TestRedisCounterStore:
    """Redis store with a mocked client."""

    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.register_script.return_value = MagicMock(return_value=3)
        return client

    def test_increment_uses_script(self, redis_client):
        store = RedisCounterStore(redis_client)
        assert store.increment("k", 2, 60) == 3
        redis_client.register_script.return_value.assert_called_once_with(keys=["k"], args=[2, 60])

    def test_attempts(self, redis_client):
        redis_client.get.return_value = "5"
        assert RedisCounterStore(redis_client).attempts("k") == 5

        redis_client.get.return_value = None
        assert RedisCounterStore(redis_client).attempts("k") == 0

    def test_available_in(self, redis_client):
        redis_client.ttl.return_value = 42
        assert RedisCounterStore(redis_client).available_in("k") == 42

        # -2: key missing, -1: no expiry
        redis_client.ttl.return_value = -2
        assert RedisCounterStore(redis_client).available_in("k") == 0

    def test_clear(self, redis_client):
        RedisCounterStore(redis_client).clear("k")
        redis_client.delete.assert_called_once_with("k")


class TestBuildCounterStore:

    def test_memory(self):
        assert isinstance(build_counter_store(Settings(rate_limit_backend="memory")), MemoryCounterStore)

    def test_database(self, engine):
        store = build_counter_store(Settings(rate_limit_backend="database"), engine)
        assert isinstance(store, DatabaseCounterStore)

    def test_database_requires_engine(self):
        with pytest.raises(ApiCacheError):
            build_counter_store(Settings(rate_limit_backend="database"))

    def test_redis_requires_url(self):
        with pytest.raises(ApiCacheError):
            build_counter_store(Settings(rate_limit_backend="redis", redis_url=None))

    def test_unknown_backend(self):
        with pytest.raises(ApiCacheError):
            build_counter_store(Settings(rate_limit_backend="carrier-pigeon"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
