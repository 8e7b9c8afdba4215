"""
API Cache

HTTP response cache and rate limiter for third-party API clients:
1. Stores API responses in per-client tables (optionally LZ4/ZSTD compressed)
2. Enforces fixed-window rate limits per client (memory, Redis or database)
3. Derives order-independent cache keys from request parameters
4. Processes cached DataForSEO responses into normalized item tables
"""

__version__ = "0.1.0"
