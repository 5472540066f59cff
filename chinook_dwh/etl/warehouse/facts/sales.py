"""
FactSales fact processor.

Design: Transaction fact (Kimball methodology)
- Grain: 1 invoice
- Measure: sale_amount = SUM(QUANTITY * UNITPRICE) over the invoice lines
- Load is insert-only and incremental: invoices already present in
  FactSales are skipped (anti-join on invoice_id), so re-runs never
  duplicate or alter existing facts.
"""

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import duckdb
import pandas as pd

from chinook_dwh.storage import KeySequence
from chinook_dwh.etl.errors import DimensionLookupError
from chinook_dwh.etl.staging.schemas import SOURCE_ROW
from ..cache import resolve_key
from ..dimensions.calendar import format_time_key
from ..values import to_money, to_python

logger = logging.getLogger(__name__)

NAMESPACE = 'fact_sales'

FACT_COLUMNS = [
    'sales_sk', 'invoice_id', 'invoice_sk', 'customer_sk', 'date_sk', 'time_sk',
    'sale_amount', 'created_by', 'created_dt', 'run_id'
]


def aggregate_invoice_lines(lines_df: pd.DataFrame, invoices_df: pd.DataFrame) -> pd.DataFrame:
    """
    Aggregate staged invoice lines to invoice grain and attach the header
    (CUSTOMERID, INVOICEDATE). Lines without a header keep NaN header columns.
    """
    columns = ['INVOICEID', 'sale_amount', 'line_count', 'CUSTOMERID', 'INVOICEDATE']
    if lines_df.empty:
        return pd.DataFrame(columns=columns)

    lines = lines_df.assign(
        line_amount=lines_df['QUANTITY'].astype(float) * lines_df['UNITPRICE'].astype(float)
    )
    agg = lines.groupby('INVOICEID', as_index=False).agg(
        sale_amount=('line_amount', 'sum'),
        line_count=('line_amount', 'size'),
    )
    agg['sale_amount'] = agg['sale_amount'].round(2)

    headers = invoices_df
    if SOURCE_ROW in headers.columns:
        headers = headers.sort_values(SOURCE_ROW, kind='stable')
    if headers.empty:
        headers = pd.DataFrame({
            'INVOICEID': pd.Series(dtype=agg['INVOICEID'].dtype),
            'CUSTOMERID': pd.Series(dtype=float),
            'INVOICEDATE': pd.Series(dtype='datetime64[ns]'),
        })
    headers = headers.drop_duplicates(subset=['INVOICEID'], keep='last')[['INVOICEID', 'CUSTOMERID', 'INVOICEDATE']]

    return agg.merge(headers, on='INVOICEID', how='left')[columns]


def find_new_invoice_ids(incoming: Iterable[int], existing: Iterable[int]) -> Set[int]:
    """Anti-join as a set difference: incoming natural keys not yet loaded."""
    return set(incoming) - set(existing)


def resolve_fact_keys(row: Dict[str, Any], caches: Dict[str, Dict]) -> Tuple[int, int, int, int]:
    """
    Resolve (invoice_sk, customer_sk, date_sk, time_sk) for an aggregated row.
    Raises DimensionLookupError on the first miss.
    """
    invoice_id = int(row['INVOICEID'])
    customer_id = to_python(row.get('CUSTOMERID'))
    invoice_ts = to_python(row.get('INVOICEDATE'))
    if customer_id is None or invoice_ts is None:
        raise DimensionLookupError('invoice_header', invoice_id)

    invoice_ts = pd.Timestamp(invoice_ts).to_pydatetime()
    invoice_sk = resolve_key(caches, 'invoice', invoice_id)
    customer_sk = resolve_key(caches, 'customer', int(customer_id))
    date_sk = resolve_key(caches, 'date', invoice_ts.date())
    time_sk = resolve_key(caches, 'time', format_time_key(invoice_ts))
    return invoice_sk, customer_sk, date_sk, time_sk


def process_fact_sales(
    conn: duckdb.DuckDBPyConnection,
    lines_df: pd.DataFrame,
    invoices_df: pd.DataFrame,
    caches: Dict[str, Dict],
    sequence: KeySequence,
    origin_tag: str,
    run_id: str,
    today: date,
    incomplete_invoices: Optional[Iterable[int]] = None
) -> Dict[str, Any]:
    """
    Process FactSales incrementally.

    Logic:
    1. Aggregate lines to invoice grain
    2. Anti-join against loaded invoice_ids
    3. Reject invoices with a line rejected at staging (incomplete_invoices)
    4. Resolve dimension keys (missing lookup -> row rejected, never defaulted)
    5. Insert new facts
    """
    stats: Dict[str, Any] = {
        'aggregated': 0,
        'already_loaded': 0,
        'inserted': 0,
        'rejected_lookup': 0,
        'rejected_incomplete': 0,
        'rejected': [],
    }
    incomplete = {int(i) for i in (incomplete_invoices or ())}

    aggregated = aggregate_invoice_lines(lines_df, invoices_df)
    stats['aggregated'] = len(aggregated)
    if aggregated.empty:
        logger.info("FactSales: no staged invoice lines")
        return stats

    with sequence.writer(NAMESPACE):
        existing = {r[0] for r in conn.execute("SELECT invoice_id FROM FactSales").fetchall()}
        incoming = [int(i) for i in aggregated['INVOICEID']]
        new_ids = find_new_invoice_ids(incoming, existing)
        stats['already_loaded'] = len(incoming) - len(new_ids)

        pending: List[List[Any]] = []
        for row in aggregated[aggregated['INVOICEID'].isin(new_ids)].sort_values('INVOICEID').to_dict('records'):
            invoice_id = int(row['INVOICEID'])
            if invoice_id in incomplete:
                reason = "invoice lines rejected at staging"
                stats['rejected_lookup'] += 1
                stats['rejected_incomplete'] += 1
                stats['rejected'].append({'invoice_id': invoice_id, 'reason': reason})
                logger.warning(f"FactSales: rejected invoice {invoice_id}: {reason}")
                continue
            try:
                invoice_sk, customer_sk, date_sk, time_sk = resolve_fact_keys(row, caches)
            except DimensionLookupError as e:
                stats['rejected_lookup'] += 1
                stats['rejected'].append({'invoice_id': invoice_id, 'reason': str(e)})
                logger.warning(f"FactSales: rejected invoice {invoice_id}: {e}")
                continue
            pending.append([
                invoice_id, invoice_sk, customer_sk, date_sk, time_sk,
                to_money(row['sale_amount']), origin_tag, today, run_id
            ])

        if pending:
            keys = sequence.next_block(NAMESPACE, len(pending))
            conn.execute("BEGIN TRANSACTION")
            try:
                conn.executemany(
                    f"INSERT INTO FactSales ({', '.join(FACT_COLUMNS)}) "
                    f"VALUES ({', '.join(['?'] * len(FACT_COLUMNS))})",
                    [[sk] + values for sk, values in zip(keys, pending)]
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            stats['inserted'] = len(pending)

    logger.info(f"FactSales: aggregated={stats['aggregated']}, already_loaded={stats['already_loaded']}, "
                f"inserted={stats['inserted']}, rejected_lookup={stats['rejected_lookup']} "
                f"(incomplete={stats['rejected_incomplete']})")
    return stats
