"""
Batch upsert helpers shared by the response processors.

Two policies:
- insert-or-ignore: rows whose natural key already exists are skipped
  (relies on the table's unique constraint), done in chunks
- newer wins: each row is looked up by natural key and inserted, updated
  (candidate created_at >= existing created_at) or skipped

The newer-wins path is a read-compare-write done row by row so it behaves
the same on every database, with or without native upsert support.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Table, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100


@dataclass
class UpsertStats:
    """Outcome of one batch upsert. total always equals the rows offered."""
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.skipped

    def add(self, other: "UpsertStats") -> "UpsertStats":
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        return self

    def to_dict(self) -> Dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "total": self.total,
        }


def _as_table(table) -> Table:
    return getattr(table, "__table__", table)


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _uniform_rows(rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Give every row the same keys so a chunk renders as one multi-row INSERT."""
    columns: List[str] = []
    for row in rows:
        for column in row:
            if column not in columns:
                columns.append(column)
    return [{column: row.get(column) for column in columns} for row in rows]


def insert_ignore_statement(conn: Connection, table):
    """INSERT that silently skips rows violating a unique constraint."""
    table = _as_table(table)
    dialect = conn.dialect.name

    if dialect == "postgresql":
        return pg_insert(table).on_conflict_do_nothing()
    if dialect == "sqlite":
        return insert(table).prefix_with("OR IGNORE")
    if dialect in ("mysql", "mariadb"):
        return insert(table).prefix_with("IGNORE")

    raise NotImplementedError(f"insert-or-ignore is not supported for dialect '{dialect}'")


def insert_or_ignore(
    conn: Connection,
    table,
    rows: Sequence[Dict[str, Any]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> UpsertStats:
    """Insert rows in chunks, skipping duplicates. Returns inserted/skipped counts."""
    stats = UpsertStats()
    if not rows:
        return stats

    for start in range(0, len(rows), chunk_size):
        chunk = _uniform_rows(rows[start:start + chunk_size])
        stmt = insert_ignore_statement(conn, table).values(chunk)
        result = conn.execute(stmt)
        inserted = max(result.rowcount, 0)
        stats.inserted += inserted
        stats.skipped += len(chunk) - inserted

    return stats


def batch_insert_or_update(
    conn: Connection,
    table,
    rows: Sequence[Dict[str, Any]],
    natural_key: Sequence[str],
    update_if_newer: bool = True,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> UpsertStats:
    """
    Upsert rows keyed by natural_key.

    Args:
        conn: Connection inside the caller's transaction
        table: Table or declarative model
        rows: Column dicts, each with a created_at value
        natural_key: Columns identifying one logical record
        update_if_newer: False = insert-or-ignore fast path,
            True = newer-wins read-compare-write

    Returns:
        UpsertStats with inserted + updated + skipped == len(rows)
    """
    table = _as_table(table)

    if not update_if_newer:
        stats = insert_or_ignore(conn, table, rows, chunk_size)
        logger.debug(
            f"{table.name}: inserted {stats.inserted}, skipped {stats.skipped} (insert-or-ignore)"
        )
        return stats

    stats = UpsertStats()
    for row in rows:
        where = [table.c[column] == row.get(column) for column in natural_key]
        existing = conn.execute(
            select(table.c.created_at).where(*where).limit(1)
        ).first()

        if existing is None:
            conn.execute(insert(table).values(**row))
            stats.inserted += 1
            continue

        existing_created_at = _as_datetime(existing[0])
        candidate_created_at = _as_datetime(row.get("created_at"))

        if (
            existing_created_at is None
            or (candidate_created_at is not None and candidate_created_at >= existing_created_at)
        ):
            conn.execute(update(table).where(*where).values(**row))
            stats.updated += 1
        else:
            stats.skipped += 1

    logger.debug(
        f"{table.name}: inserted {stats.inserted}, updated {stats.updated}, "
        f"skipped {stats.skipped} (newer wins)"
    )
    return stats
