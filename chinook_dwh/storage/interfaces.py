"""
Row source / row sink contracts.

The ETL core only talks to storage through these narrow interfaces:
- RowSource.read(table) -> lazy, finite, restartable iterator of rows
- RowSink.write(table, rows, mode) with mode in {'insert', 'upsert'}
"""

from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence

Row = Mapping[str, Any]

INSERT = 'insert'
UPSERT = 'upsert'
WRITE_MODES = (INSERT, UPSERT)


class RowSource(Protocol):
    def read(self, table_name: str) -> Iterator[Row]:
        ...


class RowSink(Protocol):
    def write(
        self,
        table_name: str,
        rows: Iterable[Row],
        mode: str = INSERT,
        key_columns: Optional[Sequence[str]] = None,
    ) -> int:
        ...


class InMemoryRowSource:
    """RowSource over in-memory tables. Each read() starts a fresh iterator."""

    def __init__(self, tables: Dict[str, List[Row]]):
        self._tables = {name.upper(): list(rows) for name, rows in tables.items()}

    def read(self, table_name: str) -> Iterator[Row]:
        rows = self._tables.get(table_name.upper())
        if rows is None:
            raise KeyError(f"Unknown source table: {table_name}")
        return (dict(row) for row in rows)

    def replace(self, table_name: str, rows: List[Row]) -> None:
        """Swap a table's contents (simulates a new extract)."""
        self._tables[table_name.upper()] = list(rows)
