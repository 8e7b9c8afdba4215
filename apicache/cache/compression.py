"""
Cache Compression Utilities

Uses LZ4 for fast compression with good ratios, ZSTD for large payloads.

Every compressed payload starts with a 1-byte algorithm marker followed by a
self-describing frame, so decompress() can tell corrupt or plain input apart
from real compressed data and reject it.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import lz4.frame
import zstandard

from apicache.exceptions import DecompressionError
from apicache.utils.config import ApiCacheConfig

logger = logging.getLogger(__name__)


# Compression type markers (1-byte prefix)
MARKER_LZ4 = b'\x01'
MARKER_ZSTD = b'\x02'

ALGORITHMS = {
    MARKER_LZ4: "lz4",
    MARKER_ZSTD: "zstd",
}


@dataclass
class CompressionStats:
    """Track compression statistics."""
    original_size: int
    compressed_size: int
    algorithm: str

    @property
    def compression_ratio(self) -> float:
        if self.compressed_size == 0:
            return 0.0
        return self.original_size / self.compressed_size

    @property
    def savings_percent(self) -> float:
        """Calculate space savings percentage."""
        if self.original_size == 0:
            return 0.0
        return (1 - self.compressed_size / self.original_size) * 100


class CompressionService:
    """
    Compresses/decompresses response payloads for the cache tables.

    Uses LZ4 by default for its speed characteristics:
    - Compression: ~500 MB/s
    - Decompression: ~3000 MB/s
    - Ratio: ~2-3x for JSON data

    Payloads at or above zstd_threshold use ZSTD for better ratios.

    When disabled, compress() and decompress() return their input unchanged.
    Compression can also be switched per client through
    ClientConfig.compression_enabled.

    No codec objects are shared between calls, so one instance can be used
    from several threads.
    """

    def __init__(
        self,
        config: Optional[ApiCacheConfig] = None,
        enabled: Optional[bool] = None,
        zstd_threshold: Optional[int] = None,
        zstd_level: int = 3,
    ):
        self.config = config
        settings = config.settings if config else None
        if enabled is None:
            enabled = settings.compression_enabled if settings else False
        if zstd_threshold is None:
            zstd_threshold = settings.compression_zstd_threshold if settings else 102400
        self.enabled = enabled
        self.zstd_threshold = zstd_threshold
        self.zstd_level = zstd_level

    def is_enabled(self, client: Optional[str] = None) -> bool:
        """Whether compression applies, optionally for a specific client."""
        if client and self.config and (self.config.has_client(client) or self.config.has_client("default")):
            # Unknown clients resolve through the "default" entry, like TTL and rate limits
            return self.config.get_client(client).compression_enabled
        return self.enabled

    def compress(self, raw: bytes, context: str = "", client: Optional[str] = None) -> bytes:
        """Compress raw bytes if compression is enabled, else return them as is."""
        if not self.is_enabled(client):
            return raw
        return self.force_compress(raw, context)

    def decompress(self, data: bytes, context: str = "", client: Optional[str] = None) -> bytes:
        """
        Reverse compress().

        Raises:
            DecompressionError: empty input, unknown marker or corrupt frame
        """
        if not self.is_enabled(client):
            return data
        return self.force_decompress(data, context)

    def force_compress(self, raw: bytes, context: str = "") -> bytes:
        """Compress regardless of the enabled flag."""
        compressed, stats = self.compress_with_stats(raw)
        logger.debug(
            f"Compressed {context or 'payload'} with {stats.algorithm}: "
            f"{stats.original_size} -> {stats.compressed_size} bytes "
            f"({stats.savings_percent:.1f}% saved)"
        )
        return compressed

    def compress_with_stats(self, raw: bytes) -> Tuple[bytes, CompressionStats]:
        if len(raw) >= self.zstd_threshold:
            payload = zstandard.ZstdCompressor(level=self.zstd_level).compress(raw)
            marker = MARKER_ZSTD
        else:
            payload = lz4.frame.compress(raw)
            marker = MARKER_LZ4

        compressed = marker + payload
        stats = CompressionStats(
            original_size=len(raw),
            compressed_size=len(compressed),
            algorithm=ALGORITHMS[marker],
        )
        return compressed, stats

    def force_decompress(self, data: bytes, context: str = "") -> bytes:
        """Decompress regardless of the enabled flag."""
        label = context or "payload"
        if not data:
            raise DecompressionError(f"Cannot decompress empty {label}")

        marker = data[0:1]
        payload = data[1:]

        try:
            if marker == MARKER_LZ4:
                return lz4.frame.decompress(payload)
            if marker == MARKER_ZSTD:
                return zstandard.ZstdDecompressor().decompress(payload)
        except (RuntimeError, ValueError, zstandard.ZstdError) as e:
            logger.error(f"Decompression of {label} failed: {e}")
            raise DecompressionError(f"Corrupt {ALGORITHMS[marker]} data in {label}: {e}") from e

        logger.error(f"Unknown compression marker {marker!r} in {label}")
        raise DecompressionError(f"Data in {label} is not compressed or uses an unknown format")
