"""
Surrogate key sequences.

Each dimension namespace owns a DuckDB sequence (seq_<namespace>_sk). The
sequence lives in the warehouse file, so values survive across runs and
are never reused, even when a transaction that drew one rolls back.
"""

import logging
import re
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List

import duckdb

from chinook_dwh.etl.errors import TransientIOError

logger = logging.getLogger(__name__)

NAMESPACES = (
    'dim_artist',
    'dim_album',
    'dim_invoice',
    'dim_customer',
    'dim_date',
    'dim_time',
    'fact_sales',
)

_NAMESPACE_RE = re.compile(r'^[a-z][a-z0-9_]*$')


def sequence_name(namespace: str) -> str:
    if not _NAMESPACE_RE.match(namespace):
        raise ValueError(f"Invalid sequence namespace: {namespace!r}")
    return f"seq_{namespace}_sk"


class KeySequence:
    """Strictly increasing integer keys per namespace, one writer at a time."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock(self, namespace: str) -> threading.RLock:
        with self._guard:
            if namespace not in self._locks:
                self._locks[namespace] = threading.RLock()
            return self._locks[namespace]

    def ensure(self, namespace: str) -> None:
        """Create the namespace sequence if absent."""
        self.conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {sequence_name(namespace)} START 1")

    def ensure_all(self, namespaces: Iterable[str] = NAMESPACES) -> None:
        for namespace in namespaces:
            self.ensure(namespace)

    def next(self, namespace: str) -> int:
        return self.next_block(namespace, 1)[0]

    def next_block(self, namespace: str, n: int) -> List[int]:
        """Allocate n keys in one round trip."""
        if n <= 0:
            return []
        seq = sequence_name(namespace)
        with self._lock(namespace):
            try:
                rows = self.conn.execute(
                    f"SELECT NEXTVAL('{seq}') FROM range({int(n)})"
                ).fetchall()
            except duckdb.IOException as e:
                raise TransientIOError(f"Key allocation failed: {e}", table=namespace) from e
        keys = sorted(r[0] for r in rows)
        logger.debug(f"{namespace}: allocated {n} keys [{keys[0]}..{keys[-1]}]")
        return keys

    @contextmanager
    def writer(self, namespace: str):
        """Hold the namespace lock for a whole dimension load."""
        lock = self._lock(namespace)
        if not lock.acquire(timeout=300):
            raise TimeoutError(f"Could not acquire writer lock for {namespace}")
        try:
            yield self
        finally:
            lock.release()
