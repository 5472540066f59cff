"""DuckDB row sink - lands rows into warehouse / staging tables."""

import logging
from typing import Iterable, List, Optional, Sequence

import duckdb

from chinook_dwh.etl.errors import TransientIOError
from .interfaces import INSERT, UPSERT, WRITE_MODES, Row

logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    """Quote a (possibly schema-qualified) identifier."""
    return '.'.join('"{}"'.format(part.replace('"', '""')) for part in name.split('.'))


class DuckDBRowSink:
    """
    RowSink over a DuckDB connection.

    Upsert is DELETE by key + INSERT. The sink never opens its own
    transaction: callers wrap a write in BEGIN/COMMIT when several writes
    must land together.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def write(
        self,
        table_name: str,
        rows: Iterable[Row],
        mode: str = INSERT,
        key_columns: Optional[Sequence[str]] = None,
    ) -> int:
        if mode not in WRITE_MODES:
            raise ValueError(f"Unknown write mode: {mode}")
        if mode == UPSERT and not key_columns:
            raise ValueError("Upsert requires key_columns")

        rows = list(rows)
        if not rows:
            return 0

        columns: List[str] = list(rows[0].keys())
        table = quote_identifier(table_name)
        col_str = ", ".join(quote_identifier(c) for c in columns)
        placeholders = ", ".join(["?"] * len(columns))

        try:
            if mode == UPSERT:
                where = " AND ".join(f"{quote_identifier(k)} = ?" for k in key_columns)
                self.conn.executemany(
                    f"DELETE FROM {table} WHERE {where}",
                    [[row[k] for k in key_columns] for row in rows]
                )

            self.conn.executemany(
                f"INSERT INTO {table} ({col_str}) VALUES ({placeholders})",
                [[row.get(c) for c in columns] for row in rows]
            )
        except duckdb.IOException as e:
            raise TransientIOError(f"Write failed: {e}", table=table_name) from e

        logger.debug(f"{table_name}: wrote {len(rows)} rows ({mode})")
        return len(rows)
