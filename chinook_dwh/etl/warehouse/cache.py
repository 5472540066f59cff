"""
Dimension cache utilities.
"""

import logging
from typing import Any, Dict

import duckdb

from chinook_dwh.etl.errors import DimensionLookupError

logger = logging.getLogger(__name__)


def init_dimension_caches(conn: duckdb.DuckDBPyConnection) -> Dict[str, Dict]:
    """
    Initialize caches for dimension lookups.

    Returns dict with:
    - customer: customer_id -> customer_sk (CURRENT version only)
    - invoice: invoice_id -> invoice_sk
    - date: date -> date_sk
    - time: 'HH:MM' -> time_sk
    """
    caches = {}

    caches['customer'] = dict(conn.execute("""
        SELECT customer_id, customer_sk FROM DimCustomer WHERE is_current = TRUE
    """).fetchall())

    caches['invoice'] = dict(conn.execute("""
        SELECT invoice_id, invoice_sk FROM DimInvoice
    """).fetchall())

    caches['date'] = dict(conn.execute("""
        SELECT date_value, date_sk FROM DimDate
    """).fetchall())

    caches['time'] = dict(conn.execute("""
        SELECT time_value, time_sk FROM DimTime
    """).fetchall())

    logger.info(f"Caches initialized: customers={len(caches['customer'])}, invoices={len(caches['invoice'])}, "
                f"dates={len(caches['date'])}, times={len(caches['time'])}")
    return caches


def resolve_key(caches: Dict[str, Dict], dimension: str, value: Any) -> int:
    """Exact-match lookup; raises DimensionLookupError instead of defaulting."""
    sk = caches.get(dimension, {}).get(value)
    if sk is None:
        raise DimensionLookupError(dimension, value)
    return sk
