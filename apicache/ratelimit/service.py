"""
Rate Limit Service

Fixed-window attempt counters per client. Limits come from the client's
config (rate_limit_max_attempts, rate_limit_decay_seconds); counters live in
a pluggable CounterStore so the same rules work in one process or across
many.

allow_request() only reads. Counters change only through
increment_attempts() and clear().
"""

import logging
import sys
from typing import Optional

from apicache.exceptions import RateLimitExceeded
from apicache.ratelimit.stores import CounterStore, MemoryCounterStore
from apicache.utils.config import ApiCacheConfig

logger = logging.getLogger(__name__)

KEY_PREFIX = "api-cache:rate-limit:"


class RateLimitService:

    def __init__(self, store: Optional[CounterStore] = None, config: Optional[ApiCacheConfig] = None):
        self.store = store or MemoryCounterStore()
        self.config = config or ApiCacheConfig()

    def get_rate_limit_key(self, client: str) -> str:
        return f"{KEY_PREFIX}{client}"

    def get_max_attempts(self, client: str) -> Optional[int]:
        return self.config.get_client(client).rate_limit_max_attempts

    def get_decay_seconds(self, client: str) -> int:
        return self.config.get_client(client).rate_limit_decay_seconds

    def is_unlimited(self, client: str) -> bool:
        max_attempts = self.get_max_attempts(client)
        return max_attempts is None or max_attempts < 0

    def get_remaining_attempts(self, client: str) -> int:
        """Attempts left in the current window, never negative."""
        if self.is_unlimited(client):
            return sys.maxsize
        used = self.store.attempts(self.get_rate_limit_key(client))
        return max(0, self.get_max_attempts(client) - used)

    def allow_request(self, client: str) -> bool:
        return self.get_remaining_attempts(client) > 0

    def get_available_in(self, client: str) -> int:
        """Seconds until the client may send again, 0 if it may send now."""
        if self.allow_request(client):
            return 0
        return self.store.available_in(self.get_rate_limit_key(client))

    def check(self, client: str) -> Optional[RateLimitExceeded]:
        """
        Rate limit decision as a value.

        Returns None when the request is allowed, otherwise a
        RateLimitExceeded carrying the retry-after delay. Nothing is raised.
        """
        if self.allow_request(client):
            return None
        available_in = self.get_available_in(client)
        logger.warning(f"Rate limit reached for {client}, available in {available_in}s")
        return RateLimitExceeded(client, available_in)

    def increment_attempts(self, client: str, amount: int = 1) -> int:
        attempts = self.store.increment(
            self.get_rate_limit_key(client), amount, self.get_decay_seconds(client)
        )
        logger.debug(f"Rate limit attempts for {client}: {attempts}")
        return attempts

    def clear(self, client: str) -> None:
        self.store.clear(self.get_rate_limit_key(client))
        logger.debug(f"Cleared rate limit for {client}")
