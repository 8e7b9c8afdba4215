"""
Response Processor Framework

Batch ETL over cached API responses:
1. Pick unprocessed (processed_at IS NULL), successful (status 200) rows
   whose endpoint starts with one of the processor's prefixes
2. For each row, in its own transaction: decode the body, extract item rows
   per task/result, upsert them into the item tables
3. Mark the row processed_at = now with a JSON processed_status

A failing row is rolled back, marked with status ERROR and counted; the
batch carries on with the next row.

Subclasses declare their item tables and natural keys and implement
extract_task_data() and extract_result().
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import Table, delete, func, select, update
from sqlalchemy.engine import Connection

from apicache.cache.manager import ApiCacheManager
from apicache.database.models import utcnow
from apicache.database.upsert import UpsertStats, batch_insert_or_update
from apicache.exceptions import ETLRowError

logger = logging.getLogger(__name__)

SANDBOX_PREFIXES = ("https://sandbox.", "http://sandbox.")

STATUS_OK = "OK"
STATUS_ERROR = "ERROR"

ItemRows = Dict[str, List[Dict[str, Any]]]


@dataclass
class ProcessingStats:
    """
    Aggregate outcome of processing one or more responses.

    raw_items counts every item found in the results; the per-table
    UpsertStats count the rows extracted from them.
    """
    processed_responses: int = 0
    errors: int = 0
    raw_items: int = 0
    tables: Dict[str, UpsertStats] = field(default_factory=dict)

    @classmethod
    def empty(cls, table_names: Iterable[str]) -> "ProcessingStats":
        return cls(tables={name: UpsertStats() for name in table_names})

    def record(self, name: str, stats: UpsertStats) -> None:
        self.tables.setdefault(name, UpsertStats()).add(stats)

    def merge(self, other: "ProcessingStats") -> "ProcessingStats":
        self.processed_responses += other.processed_responses
        self.errors += other.errors
        self.raw_items += other.raw_items
        for name, stats in other.tables.items():
            self.record(name, stats)
        return self

    @property
    def items_inserted(self) -> int:
        return sum(s.inserted for s in self.tables.values())

    @property
    def items_updated(self) -> int:
        return sum(s.updated for s in self.tables.values())

    @property
    def items_skipped(self) -> int:
        return sum(s.skipped for s in self.tables.values())

    @property
    def items_total(self) -> int:
        return sum(s.total for s in self.tables.values())

    def item_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for name, stats in self.tables.items():
            counts[name] = stats.total
            counts[f"{name}_inserted"] = stats.inserted
            counts[f"{name}_updated"] = stats.updated
            counts[f"{name}_skipped"] = stats.skipped
        counts["items_inserted"] = self.items_inserted
        counts["items_updated"] = self.items_updated
        counts["items_skipped"] = self.items_skipped
        counts["items_total"] = self.items_total
        counts["raw_items"] = self.raw_items
        return counts

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed_responses": self.processed_responses,
            "errors": self.errors,
            **self.item_counts(),
        }


class ResponseProcessor:
    """
    Base class for processors that turn cached responses into item rows.

    Attributes:
        client: Client whose responses table is read
        endpoints_to_process: Endpoint prefixes this processor owns
        item_tables: name -> declarative model
        natural_keys: name -> columns identifying one record
    """

    client: str = "dataforseo"
    endpoints_to_process: Tuple[str, ...] = ()
    item_tables: Dict[str, Any] = {}
    natural_keys: Dict[str, Tuple[str, ...]] = {}

    def __init__(
        self,
        manager: ApiCacheManager,
        skip_sandbox: bool = True,
        update_if_newer: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.manager = manager
        self.repository = manager.repository
        self.engine = manager.repository.engine
        self.skip_sandbox = skip_sandbox
        self.update_if_newer = update_if_newer
        self.clock = clock

    # =========================================================================
    # TABLES
    # =========================================================================

    def get_responses_table_name(self) -> str:
        return self.manager.get_table_name(self.client)

    def get_responses_table(self) -> Table:
        return self.repository.get_table(self.client)

    def get_item_table(self, name: str) -> Table:
        return self.item_tables[name].__table__

    def active_tables(self) -> List[str]:
        """Item tables filled by the current settings."""
        return list(self.item_tables)

    # =========================================================================
    # ROW SELECTION
    # =========================================================================

    def matches_endpoint(self, endpoint: Optional[str]) -> bool:
        return bool(endpoint) and endpoint.startswith(self.endpoints_to_process)

    @staticmethod
    def is_sandbox(base_url: Optional[str]) -> bool:
        return bool(base_url) and base_url.startswith(SANDBOX_PREFIXES)

    def select_candidates(self, limit: int) -> List[int]:
        """Ids of up to `limit` unprocessed rows this processor owns, by id."""
        if limit <= 0:
            return []

        table = self.get_responses_table()
        ids = []

        with self.engine.connect() as conn:
            rows = conn.execute(
                select(table.c.id, table.c.endpoint, table.c.base_url)
                .where(table.c.processed_at.is_(None), table.c.response_status_code == 200)
                .order_by(table.c.id)
            )
            for row in rows:
                if not self.matches_endpoint(row.endpoint):
                    continue
                if self.skip_sandbox and self.is_sandbox(row.base_url):
                    continue
                ids.append(row.id)
                if len(ids) >= limit:
                    break

        return ids

    def reset_processed(self) -> int:
        """Clear processed_at/processed_status on every row this processor owns."""
        table = self.get_responses_table()

        with self.engine.connect() as conn:
            rows = conn.execute(
                select(table.c.id, table.c.endpoint).where(
                    (table.c.processed_at.is_not(None)) | (table.c.processed_status.is_not(None))
                )
            )
            ids = [row.id for row in rows if self.matches_endpoint(row.endpoint)]

        with self.engine.begin() as conn:
            for start in range(0, len(ids), 500):
                conn.execute(
                    update(table)
                    .where(table.c.id.in_(ids[start:start + 500]))
                    .values(processed_at=None, processed_status=None)
                )

        logger.info(f"Reset processed status for {len(ids)} rows in {table.name}")
        return len(ids)

    def clear_processed_tables(
        self,
        with_count: bool = False,
        tables: Optional[Sequence[str]] = None,
    ) -> Dict[str, Optional[int]]:
        """
        Delete every row from the item tables.

        Returns:
            {"<table>_cleared": count} with counts taken before deleting,
            or None when with_count is False or the table was left alone
        """
        tables = list(self.item_tables) if tables is None else list(tables)
        stats: Dict[str, Optional[int]] = {f"{name}_cleared": None for name in self.item_tables}

        with self.engine.begin() as conn:
            for name in tables:
                table = self.get_item_table(name)
                if with_count:
                    stats[f"{name}_cleared"] = conn.execute(
                        select(func.count()).select_from(table)
                    ).scalar()
                conn.execute(delete(table))

        logger.info(f"Cleared processed tables {tables}: {stats}")
        return stats

    # =========================================================================
    # EXTRACTION (subclass hooks)
    # =========================================================================

    def extract_task_data(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_result(
        self, result: Dict[str, Any], task_data: Dict[str, Any], now: datetime
    ) -> Tuple[ItemRows, int]:
        """
        Extract item rows from one result.

        Returns:
            (rows per item table, number of raw items seen)
        """
        raise NotImplementedError

    # =========================================================================
    # PROCESSING
    # =========================================================================

    def parse_response_body(self, response_id: int, stored_body: Any) -> Dict[str, Any]:
        body = self.repository.retrieve_body(
            stored_body, client=self.client, context=f"response {response_id} body"
        )
        try:
            data = json.loads(body) if body is not None else None
        except json.JSONDecodeError:
            data = None

        if not isinstance(data, dict) or not isinstance(data.get("tasks"), list):
            raise ETLRowError("Invalid JSON response or missing tasks array", response_id)
        return data

    def upsert(self, conn: Connection, name: str, rows: List[Dict[str, Any]]) -> UpsertStats:
        return batch_insert_or_update(
            conn,
            self.get_item_table(name),
            rows,
            self.natural_keys[name],
            update_if_newer=self.update_if_newer,
        )

    def process_response(self, conn: Connection, response_id: int, stored_body: Any) -> ProcessingStats:
        """Extract and upsert the items of one cached response."""
        data = self.parse_response_body(response_id, stored_body)
        stats = ProcessingStats.empty(self.active_tables())
        now = self.clock()

        for task in data["tasks"]:
            if not isinstance(task, dict) or not task.get("result"):
                continue

            task_data = self.extract_task_data(task.get("data") or {})
            task_data["task_id"] = task.get("id")
            task_data["response_id"] = response_id

            for result in task["result"]:
                if not isinstance(result, dict):
                    continue
                rows_by_table, raw_items = self.extract_result(result, dict(task_data), now)
                stats.raw_items += raw_items
                for name, rows in rows_by_table.items():
                    stats.record(name, self.upsert(conn, name, rows))

        return stats

    def _status_json(self, status: str, error: Optional[str], stats: ProcessingStats) -> str:
        return json.dumps({"status": status, "error": error, **stats.item_counts()}, indent=4)

    def process_responses(self, limit: int = 100) -> ProcessingStats:
        """
        Process up to `limit` unprocessed responses.

        Returns:
            ProcessingStats aggregated over all rows
        """
        table = self.get_responses_table()
        candidate_ids = self.select_candidates(limit)
        totals = ProcessingStats.empty(self.active_tables())

        logger.debug(f"Processing {len(candidate_ids)} responses from {table.name} (limit {limit})")

        for response_id in candidate_ids:
            try:
                with self.engine.begin() as conn:
                    stored_body = conn.execute(
                        select(table.c.response_body).where(table.c.id == response_id)
                    ).scalar()
                    row_stats = self.process_response(conn, response_id, stored_body)
                    conn.execute(
                        update(table)
                        .where(table.c.id == response_id)
                        .values(
                            processed_at=self.clock(),
                            processed_status=self._status_json(STATUS_OK, None, row_stats),
                        )
                    )
            except Exception as e:
                logger.error(f"Failed to process response {response_id} from {table.name}: {e}")
                totals.errors += 1
                with self.engine.begin() as conn:
                    conn.execute(
                        update(table)
                        .where(table.c.id == response_id)
                        .values(
                            processed_at=self.clock(),
                            processed_status=self._status_json(
                                STATUS_ERROR, str(e), ProcessingStats.empty(self.active_tables())
                            ),
                        )
                    )
                continue

            totals.merge(row_stats)
            totals.processed_responses += 1

        logger.info(f"{type(self).__name__} finished: {totals.to_dict()}")
        return totals
