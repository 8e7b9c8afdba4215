"""
Counter stores for fixed-window rate limiting.

Every store implements the same four operations:
    increment(key, amount, decay_seconds) -> attempts after increment
    attempts(key)                          -> attempts in the live window
    available_in(key)                      -> seconds until the window resets
    clear(key)

A window starts with the first increment and lasts decay_seconds. Increments
are atomic in every backend: a lock in memory, a Lua script in Redis, a
single UPDATE ... SET attempts = attempts + n statement in the database.
"""

import logging
import math
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

import redis
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from apicache.database.models import RateLimitCounter, utcnow
from apicache.exceptions import ApiCacheError
from apicache.utils.config import Settings

logger = logging.getLogger(__name__)


class CounterStore:
    """Interface shared by all counter backends."""

    def increment(self, key: str, amount: int, decay_seconds: int) -> int:
        raise NotImplementedError

    def attempts(self, key: str) -> int:
        raise NotImplementedError

    def available_in(self, key: str) -> int:
        raise NotImplementedError

    def clear(self, key: str) -> None:
        raise NotImplementedError


# =============================================================================
# IN-MEMORY
# =============================================================================

class MemoryCounterStore(CounterStore):
    """Single-process store: a dict guarded by a lock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[int, float]]:
        """The key's counter if its window is still open. Never modifies the store."""
        counter = self._counters.get(key)
        if counter is None or counter[1] <= self.clock():
            return None
        return counter

    def increment(self, key: str, amount: int, decay_seconds: int) -> int:
        with self._lock:
            counter = self._live(key)
            if counter is None:
                counter = (0, self.clock() + decay_seconds)
            attempts = counter[0] + amount
            self._counters[key] = (attempts, counter[1])
            return attempts

    def attempts(self, key: str) -> int:
        with self._lock:
            counter = self._live(key)
            return counter[0] if counter else 0

    def available_in(self, key: str) -> int:
        with self._lock:
            counter = self._live(key)
            if counter is None:
                return 0
            return max(0, math.ceil(counter[1] - self.clock()))

    def clear(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)


# =============================================================================
# REDIS
# =============================================================================

# INCRBY and start the window (EXPIRE) in one atomic step
INCREMENT_SCRIPT = """
local attempts = redis.call('INCRBY', KEYS[1], ARGV[1])
if redis.call('TTL', KEYS[1]) < 0 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return attempts
"""


class RedisCounterStore(CounterStore):
    """Multi-process store backed by Redis keys with a TTL."""

    def __init__(self, client: redis.Redis):
        self._redis = client
        self._increment = client.register_script(INCREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def increment(self, key: str, amount: int, decay_seconds: int) -> int:
        return int(self._increment(keys=[key], args=[amount, decay_seconds]))

    def attempts(self, key: str) -> int:
        value = self._redis.get(key)
        return int(value) if value is not None else 0

    def available_in(self, key: str) -> int:
        ttl = self._redis.ttl(key)
        return max(0, int(ttl)) if ttl is not None else 0

    def clear(self, key: str) -> None:
        self._redis.delete(key)


# =============================================================================
# DATABASE
# =============================================================================

class DatabaseCounterStore(CounterStore):
    """
    Multi-process store backed by the api_cache_rate_limits table.

    A live window is bumped with one UPDATE statement. When no live window
    exists the expired row is replaced; if another writer creates the window
    first the unique key makes the insert fail and the increment is retried.
    """

    MAX_RETRIES = 3

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self.clock = clock
        self.table = RateLimitCounter.__table__

    def increment(self, key: str, amount: int, decay_seconds: int) -> int:
        t = self.table
        for attempt in range(self.MAX_RETRIES):
            now = self.clock()
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(
                        update(t)
                        .where(t.c.key == key, t.c.expires_at > now)
                        .values(attempts=t.c.attempts + amount)
                    )
                    if result.rowcount:
                        return conn.execute(
                            select(t.c.attempts).where(t.c.key == key)
                        ).scalar()

                    conn.execute(delete(t).where(t.c.key == key, t.c.expires_at <= now))
                    conn.execute(
                        insert(t).values(
                            key=key,
                            attempts=amount,
                            expires_at=now + timedelta(seconds=decay_seconds),
                        )
                    )
                    return amount
            except IntegrityError:
                logger.debug(f"Concurrent window creation for {key}, retrying ({attempt + 1})")

        raise ApiCacheError(f"Could not increment rate limit counter {key}")

    def _live_row(self, key: str):
        t = self.table
        with self.engine.connect() as conn:
            return conn.execute(
                select(t.c.attempts, t.c.expires_at).where(t.c.key == key, t.c.expires_at > self.clock())
            ).first()

    def attempts(self, key: str) -> int:
        row = self._live_row(key)
        return row.attempts if row else 0

    def available_in(self, key: str) -> int:
        row = self._live_row(key)
        if row is None:
            return 0
        return max(0, math.ceil((row.expires_at - self.clock()).total_seconds()))

    def clear(self, key: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.key == key))


def build_counter_store(settings: Settings, engine: Optional[Engine] = None) -> CounterStore:
    """Pick a counter store from settings.rate_limit_backend."""
    backend = settings.rate_limit_backend.lower()

    if backend == "memory":
        return MemoryCounterStore()
    if backend == "redis":
        if not settings.redis_url:
            raise ApiCacheError("rate_limit_backend=redis requires API_CACHE_REDIS_URL")
        return RedisCounterStore.from_url(settings.redis_url)
    if backend == "database":
        if engine is None:
            raise ApiCacheError("rate_limit_backend=database requires an engine")
        return DatabaseCounterStore(engine)

    raise ApiCacheError(f"Unknown rate limit backend: {settings.rate_limit_backend}")
