"""
Responses Table Converter

Copies a client's cached responses between its uncompressed and compressed
tables, re-encoding the payload columns on the way, and validates the copy.

Payloads are copied byte for byte (headers keep their original JSON text),
so a converted row decodes to exactly what the source row held.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import delete, func, insert, select

from apicache.cache.repository import CacheRepository
from apicache.database.models import PAYLOAD_COLUMNS

logger = logging.getLogger(__name__)

COMPRESS = "compress"
DECOMPRESS = "decompress"

PROCESSING_COLUMNS = ("processed_at", "processed_status")


@dataclass
class ConversionStats:
    total_count: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0

    def add(self, other: "ConversionStats") -> "ConversionStats":
        self.total_count += other.total_count
        self.processed_count += other.processed_count
        self.skipped_count += other.skipped_count
        self.error_count += other.error_count
        return self

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ValidationStats:
    validated_count: int = 0
    mismatch_count: int = 0
    error_count: int = 0

    def add(self, other: "ValidationStats") -> "ValidationStats":
        self.validated_count += other.validated_count
        self.mismatch_count += other.mismatch_count
        self.error_count += other.error_count
        return self

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class ResponsesTableConverter:
    """
    Convert api_cache_{client}_responses <-> api_cache_{client}_responses_compressed.

    Args:
        repository: Repository owning both tables
        client: Client whose tables are converted
        direction: "compress" (plain -> compressed) or "decompress"
        batch_size: Rows per batch
        overwrite: Replace target rows whose key already exists
        copy_processing_state: Keep processed_at/processed_status, otherwise
            converted rows are left unprocessed
    """

    def __init__(
        self,
        repository: CacheRepository,
        client: str,
        direction: str = COMPRESS,
        batch_size: int = 100,
        overwrite: bool = False,
        copy_processing_state: bool = False,
    ):
        if direction not in (COMPRESS, DECOMPRESS):
            raise ValueError(f"direction must be '{COMPRESS}' or '{DECOMPRESS}'")
        self.repository = repository
        self.client = client
        self.direction = direction
        self.batch_size = batch_size
        self.overwrite = overwrite
        self.copy_processing_state = copy_processing_state

        compress = direction == COMPRESS
        self.source = repository.get_table(client, compressed=not compress)
        self.target = repository.get_table(client, compressed=compress)

    @property
    def engine(self):
        return self.repository.engine

    @property
    def compression(self):
        return self.repository.compression

    def _count(self, table) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar() or 0

    def get_source_row_count(self) -> int:
        return self._count(self.source)

    def get_target_row_count(self) -> int:
        return self._count(self.target)

    # =========================================================================
    # PAYLOAD TRANSFORMS
    # =========================================================================

    def _to_target(self, value: Any, context: str) -> Any:
        if value is None:
            return None
        if self.direction == COMPRESS:
            raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
            return self.compression.force_compress(raw, context)
        return self.compression.force_decompress(bytes(value), context).decode("utf-8")

    def _decoded(self, value: Any, compressed: bool, context: str) -> Optional[str]:
        """Payload as text, whichever table it came from."""
        if value is None:
            return None
        if compressed:
            return self.compression.force_decompress(bytes(value), context).decode("utf-8")
        return value.decode("utf-8") if isinstance(value, (bytes, bytearray, memoryview)) else value

    def prepare_target_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        data = {name: value for name, value in row.items() if name != "id"}
        for column in PAYLOAD_COLUMNS:
            data[column] = self._to_target(data[column], f"{row['key']} {column}")
        if not self.copy_processing_state:
            for column in PROCESSING_COLUMNS:
                data[column] = None
        return data

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def convert_batch(self, offset: int = 0, batch_size: Optional[int] = None) -> ConversionStats:
        """Convert one batch of source rows, ordered by id."""
        batch_size = batch_size or self.batch_size
        stats = ConversionStats()

        with self.engine.connect() as conn:
            rows = conn.execute(
                select(self.source).order_by(self.source.c.id).offset(offset).limit(batch_size)
            ).mappings().all()

        stats.total_count = len(rows)
        for row in rows:
            try:
                with self.engine.begin() as conn:
                    exists = conn.execute(
                        select(self.target.c.id).where(self.target.c.key == row["key"])
                    ).first()
                    if exists and not self.overwrite:
                        stats.skipped_count += 1
                        continue
                    if exists:
                        conn.execute(delete(self.target).where(self.target.c.key == row["key"]))
                    conn.execute(insert(self.target).values(**self.prepare_target_row(row)))
                stats.processed_count += 1
            except Exception as e:
                logger.error(f"Error converting row {row['id']} ({row['key']}) for {self.client}: {e}")
                stats.error_count += 1

        logger.debug(f"Converted batch at offset {offset} for {self.client}: {stats.to_dict()}")
        return stats

    def convert_all(self) -> ConversionStats:
        total_rows = self.get_source_row_count()
        logger.info(
            f"Starting {self.direction} of {total_rows} rows: "
            f"{self.source.name} -> {self.target.name}"
        )

        totals = ConversionStats()
        for offset in range(0, total_rows, self.batch_size):
            totals.add(self.convert_batch(offset))

        logger.info(f"Finished {self.direction} for {self.client}: {totals.to_dict()}")
        return totals

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate_row(self, source_row: Mapping[str, Any], target_row: Mapping[str, Any]) -> bool:
        excluded = {"id", *PAYLOAD_COLUMNS}
        if not self.copy_processing_state:
            excluded.update(PROCESSING_COLUMNS)

        for column in self.source.c.keys():
            if column in excluded:
                continue
            if source_row[column] != target_row[column]:
                logger.debug(f"Mismatch in {column} for key {source_row['key']}")
                return False

        target_compressed = self.direction == COMPRESS
        for column in PAYLOAD_COLUMNS:
            context = f"{source_row['key']} {column}"
            expected = self._decoded(source_row[column], not target_compressed, context)
            actual = self._decoded(target_row[column], target_compressed, context)
            if expected != actual:
                logger.debug(f"Mismatch in {column} for key {source_row['key']}")
                return False

        return True

    def validate_batch(self, offset: int = 0, batch_size: Optional[int] = None) -> ValidationStats:
        """Check one batch of target rows against their source rows."""
        batch_size = batch_size or self.batch_size
        stats = ValidationStats()

        with self.engine.connect() as conn:
            target_rows = conn.execute(
                select(self.target).order_by(self.target.c.id).offset(offset).limit(batch_size)
            ).mappings().all()
            if not target_rows:
                return stats
            keys = [row["key"] for row in target_rows]
            source_rows = {
                row["key"]: row
                for row in conn.execute(
                    select(self.source).where(self.source.c.key.in_(keys))
                ).mappings()
            }

        for target_row in target_rows:
            source_row = source_rows.get(target_row["key"])
            if source_row is None:
                logger.warning(f"Row {target_row['key']} in {self.target.name} has no source row")
                stats.error_count += 1
                continue
            try:
                if self.validate_row(source_row, target_row):
                    stats.validated_count += 1
                else:
                    stats.mismatch_count += 1
            except Exception as e:
                logger.error(f"Error validating row {target_row['key']} for {self.client}: {e}")
                stats.error_count += 1

        return stats

    def validate_all(self) -> ValidationStats:
        total_rows = self.get_target_row_count()
        totals = ValidationStats()
        for offset in range(0, total_rows, self.batch_size):
            totals.add(self.validate_batch(offset))
        logger.info(f"Validated {self.target.name}: {totals.to_dict()}")
        return totals
