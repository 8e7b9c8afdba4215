"""
Cache Repository

Stores and retrieves API responses in per-client tables.

Table identity encodes the client and the compression mode:
    api_cache_{client}_responses
    api_cache_{client}_responses_compressed

Payload columns (request/response headers and bodies) are JSON encoded
(headers only) and compressed when the client's table is compressed.
Expired rows are invisible to get() and removed by cleanup().
"""

import json
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Union

from sqlalchemy import MetaData, Table, delete, func, insert, inspect, or_, select
from sqlalchemy.engine import Engine

from apicache.cache.compression import CompressionService
from apicache.cache.entries import CacheEntry, ResponseMetadata
from apicache.database.models import build_responses_table, utcnow
from apicache.exceptions import MalformedDataError, ValidationError
from apicache.utils.config import ApiCacheConfig

logger = logging.getLogger(__name__)

TABLE_PREFIX = "api_cache_"
TABLE_SUFFIX = "_responses"
COMPRESSED_SUFFIX = "_compressed"
MAX_TABLE_NAME_LENGTH = 64  # MySQL identifier limit, the strictest we target
MAX_CLIENT_NAME_LENGTH = MAX_TABLE_NAME_LENGTH - len(TABLE_PREFIX + TABLE_SUFFIX + COMPRESSED_SUFFIX)
MAX_SUMMARY_LENGTH = 255

StoredPayload = Union[str, bytes, None]


class CacheRepository:
    """
    Persistence for cached API responses.

    Usage:
        repository = CacheRepository(engine, CompressionService(config), config)
        repository.create_response_table("demo")
        repository.store("demo", "k1", {"endpoint": "/users", "response_body": '{"a":1}'})
        entry = repository.get("demo", "k1")
    """

    def __init__(
        self,
        engine: Engine,
        compression: CompressionService,
        config: Optional[ApiCacheConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.compression = compression
        self.config = config or ApiCacheConfig()
        self.clock = clock
        self.metadata = MetaData()
        self._tables: Dict[str, Table] = {}

    # =========================================================================
    # TABLES
    # =========================================================================

    def is_compressed(self, client: str, compressed: Optional[bool] = None) -> bool:
        if compressed is None:
            return self.compression.is_enabled(client)
        return compressed

    def get_table_name(self, client: str, compressed: Optional[bool] = None) -> str:
        """
        Derive the response table name for a client.

        Characters outside [A-Za-z0-9_] become underscores, the client part is
        cut so the full name fits in 64 characters, and runs of underscores
        collapse to one.
        """
        if not isinstance(client, str):
            raise ValidationError("Client name must be a string")

        sanitized = re.sub(r"[^A-Za-z0-9_]", "_", client)
        sanitized = sanitized[:MAX_CLIENT_NAME_LENGTH]
        if not sanitized.strip("_"):
            raise ValidationError(f"Client name '{client}' does not produce a valid table name")

        name = TABLE_PREFIX + sanitized + TABLE_SUFFIX
        if self.is_compressed(client, compressed):
            name += COMPRESSED_SUFFIX

        return re.sub(r"_+", "_", name)

    def get_table(self, client: str, compressed: Optional[bool] = None) -> Table:
        compressed = self.is_compressed(client, compressed)
        name = self.get_table_name(client, compressed)
        table = self._tables.get(name)
        if table is None:
            table = build_responses_table(self.metadata, name, compressed)
            self._tables[name] = table
        return table

    def table_exists(self, client: str, compressed: Optional[bool] = None) -> bool:
        return inspect(self.engine).has_table(self.get_table_name(client, compressed))

    def create_response_table(
        self,
        client: str,
        compressed: Optional[bool] = None,
        drop_existing: bool = False,
    ) -> Table:
        """Create the response table (and its indexes) for a client."""
        table = self.get_table(client, compressed)
        if drop_existing:
            logger.warning(f"Dropping table {table.name}")
            table.drop(self.engine, checkfirst=True)
        table.create(self.engine, checkfirst=True)
        logger.info(f"Response table {table.name} ready")
        return table

    # =========================================================================
    # PAYLOAD ENCODING
    # =========================================================================

    def prepare_body(
        self,
        body: Optional[str],
        client: Optional[str] = None,
        compressed: Optional[bool] = None,
        context: str = "body",
    ) -> StoredPayload:
        """Encode a body for storage: compressed bytes or plain text."""
        if body is None:
            return None
        if self.is_compressed(client, compressed):
            return self.compression.force_compress(body.encode("utf-8"), context)
        return body

    def retrieve_body(
        self,
        stored: StoredPayload,
        client: Optional[str] = None,
        compressed: Optional[bool] = None,
        context: str = "body",
    ) -> Optional[str]:
        """
        Reverse prepare_body().

        Raises:
            DecompressionError: corrupt compressed payload
            MalformedDataError: payload is not valid UTF-8
        """
        if stored is None:
            return None

        if self.is_compressed(client, compressed):
            raw = self.compression.force_decompress(bytes(stored), context)
        elif isinstance(stored, (bytes, bytearray, memoryview)):
            raw = bytes(stored)
        else:
            return stored

        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedDataError(f"Stored {context} is not valid UTF-8: {e}") from e

    def prepare_headers(
        self,
        headers: Optional[Mapping[str, Any]],
        client: Optional[str] = None,
        compressed: Optional[bool] = None,
        context: str = "headers",
    ) -> StoredPayload:
        """JSON encode headers, then compress when the table is compressed."""
        if headers is None:
            return None
        encoded = json.dumps(dict(headers), ensure_ascii=False)
        return self.prepare_body(encoded, client, compressed, context)

    def retrieve_headers(
        self,
        stored: StoredPayload,
        client: Optional[str] = None,
        compressed: Optional[bool] = None,
        context: str = "headers",
    ) -> Optional[Dict[str, Any]]:
        """
        Reverse prepare_headers().

        Raises:
            MalformedDataError: not JSON, or JSON that is not an object
        """
        decoded = self.retrieve_body(stored, client, compressed, context)
        if decoded is None:
            return None

        try:
            headers = json.loads(decoded)
        except json.JSONDecodeError as e:
            raise MalformedDataError(f"Failed to decode {context}: {e}") from e

        if not isinstance(headers, dict):
            raise MalformedDataError(
                f"Decoded {context} must be a map, got {type(headers).__name__}"
            )
        return headers

    # =========================================================================
    # STORE / GET
    # =========================================================================

    def store(
        self,
        client: str,
        key: str,
        metadata: Union[ResponseMetadata, Mapping[str, Any]],
        ttl: Optional[int] = None,
    ) -> None:
        """
        Insert a cached response.

        Args:
            client: Client name, selects the table
            key: Cache key, unique within the table
            metadata: ResponseMetadata or mapping; endpoint and
                response_body are required
            ttl: Seconds until expiry. None or 0 = never expires

        Raises:
            ValidationError: endpoint or response_body missing
        """
        if not isinstance(metadata, ResponseMetadata):
            metadata = ResponseMetadata.from_dict(metadata)

        if not metadata.endpoint:
            raise ValidationError("Missing required field: endpoint")
        if metadata.response_body is None:
            raise ValidationError("Missing required field: response_body")

        compressed = self.is_compressed(client)
        table = self.get_table(client, compressed)
        now = self.clock()

        response_size = metadata.response_size
        if response_size is None:
            response_size = len(metadata.response_body.encode("utf-8"))

        summary = metadata.request_params_summary
        if summary is not None:
            summary = summary[:MAX_SUMMARY_LENGTH]

        row = {
            "key": key,
            "client": client,
            "version": metadata.version,
            "endpoint": metadata.endpoint,
            "base_url": metadata.base_url,
            "full_url": metadata.full_url,
            "method": metadata.method,
            "attributes": metadata.attributes,
            "credits": metadata.credits,
            "cost": metadata.cost,
            "request_params_summary": summary,
            "request_headers": self.prepare_headers(
                metadata.request_headers, compressed=compressed, context=f"{key} request_headers"
            ),
            "request_body": self.prepare_body(
                metadata.request_body, compressed=compressed, context=f"{key} request_body"
            ),
            "response_headers": self.prepare_headers(
                metadata.response_headers, compressed=compressed, context=f"{key} response_headers"
            ),
            "response_body": self.prepare_body(
                metadata.response_body, compressed=compressed, context=f"{key} response_body"
            ),
            "response_status_code": metadata.response_status_code,
            "response_size": response_size,
            "response_time": metadata.response_time,
            "expires_at": now + timedelta(seconds=ttl) if ttl else None,
            "created_at": now,
            "updated_at": now,
        }

        with self.engine.begin() as conn:
            conn.execute(insert(table).values(**row))

        logger.debug(f"Stored {client} response {key} in {table.name} ({response_size} bytes)")

    def get(self, client: str, key: str) -> Optional[CacheEntry]:
        """
        Fetch a non-expired cached response.

        Returns:
            CacheEntry with decoded payloads, or None when missing/expired

        Raises:
            DecompressionError, MalformedDataError: stored payload is corrupt
        """
        compressed = self.is_compressed(client)
        table = self.get_table(client, compressed)
        now = self.clock()

        with self.engine.connect() as conn:
            row = conn.execute(
                select(table).where(
                    table.c.key == key,
                    or_(table.c.expires_at.is_(None), table.c.expires_at > now),
                )
            ).mappings().first()

        if row is None:
            logger.debug(f"Cache miss for {client} key {key}")
            return None

        logger.debug(f"Cache hit for {client} key {key}")
        return self._to_entry(row, compressed)

    def _to_entry(self, row: Mapping[str, Any], compressed: bool) -> CacheEntry:
        key = row["key"]
        return CacheEntry(
            id=row["id"],
            key=key,
            client=row["client"],
            endpoint=row["endpoint"],
            version=row["version"],
            base_url=row["base_url"],
            full_url=row["full_url"],
            method=row["method"],
            attributes=row["attributes"],
            credits=row["credits"],
            cost=row["cost"],
            request_params_summary=row["request_params_summary"],
            request_headers=self.retrieve_headers(
                row["request_headers"], compressed=compressed, context=f"{key} request_headers"
            ),
            request_body=self.retrieve_body(
                row["request_body"], compressed=compressed, context=f"{key} request_body"
            ),
            response_headers=self.retrieve_headers(
                row["response_headers"], compressed=compressed, context=f"{key} response_headers"
            ),
            response_body=self.retrieve_body(
                row["response_body"], compressed=compressed, context=f"{key} response_body"
            ),
            response_status_code=row["response_status_code"],
            response_size=row["response_size"],
            response_time=row["response_time"],
            expires_at=row["expires_at"],
            processed_at=row["processed_at"],
            processed_status=row["processed_status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # =========================================================================
    # COUNTS
    # =========================================================================

    def _count(self, client: str, *criteria) -> int:
        table = self.get_table(client)
        with self.engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(table).where(*criteria)
            ).scalar() or 0

    def count_total_responses(self, client: str) -> int:
        return self._count(client)

    def count_active_responses(self, client: str) -> int:
        table = self.get_table(client)
        now = self.clock()
        return self._count(client, or_(table.c.expires_at.is_(None), table.c.expires_at > now))

    def count_expired_responses(self, client: str) -> int:
        table = self.get_table(client)
        now = self.clock()
        return self._count(client, table.c.expires_at.is_not(None), table.c.expires_at <= now)

    # =========================================================================
    # CLEANUP
    # =========================================================================

    def delete_expired(self, client: str) -> int:
        """Delete rows with expires_at <= now. Returns the number deleted."""
        table = self.get_table(client)
        now = self.clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(table).where(table.c.expires_at.is_not(None), table.c.expires_at <= now)
            )
        deleted = max(result.rowcount, 0)
        logger.info(f"Deleted {deleted} expired responses from {table.name}")
        return deleted

    def cleanup(self, client: Optional[str] = None) -> Dict[str, int]:
        """
        Delete expired rows for one client, or for every configured client.

        Clients whose table does not exist yet are skipped.
        """
        clients = [client] if client else self.config.client_names
        deleted = {}
        for name in clients:
            if not self.table_exists(name):
                logger.debug(f"Skipping cleanup for {name}: table does not exist")
                continue
            deleted[name] = self.delete_expired(name)
        return deleted

    def clear_table(self, client: str) -> int:
        """Delete every row in the client's table. Returns the number deleted."""
        table = self.get_table(client)
        with self.engine.begin() as conn:
            result = conn.execute(delete(table))
        deleted = max(result.rowcount, 0)
        logger.info(f"Cleared {deleted} rows from {table.name}")
        return deleted
