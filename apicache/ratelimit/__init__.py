"""Fixed-window rate limiting with memory, Redis or database counters."""

from apicache.ratelimit.service import RateLimitService
from apicache.ratelimit.stores import (
    CounterStore,
    DatabaseCounterStore,
    MemoryCounterStore,
    RedisCounterStore,
    build_counter_store,
)

__all__ = [
    "RateLimitService",
    "CounterStore",
    "DatabaseCounterStore",
    "MemoryCounterStore",
    "RedisCounterStore",
    "build_counter_store",
]
