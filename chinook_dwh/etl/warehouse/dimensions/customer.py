"""
DimCustomer dimension processor with SCD Type 2.

Per natural key (customer_id) every version row is in one of two states:

    CURRENT     is_current = TRUE,  effective_to IS NULL
    SUPERSEDED  is_current = FALSE, effective_to set

Transitions applied by a load:

    (none)  --INSERT-->    CURRENT
    CURRENT --SUPERSEDE--> SUPERSEDED + new CURRENT (new surrogate key)
    CURRENT --NOOP-->      CURRENT

Invariant: exactly one CURRENT row per natural key, non-overlapping
[effective_from, effective_to] ranges. check_customer_history() verifies
it before a load mutates anything.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import duckdb
import pandas as pd

from chinook_dwh.storage import KeySequence
from chinook_dwh.etl.errors import ConsistencyError
from chinook_dwh.etl.staging.schemas import CREATED_BY, CREATED_DT, SOURCE_ROW
from ..values import to_date, to_python

logger = logging.getLogger(__name__)

NAMESPACE = 'dim_customer'

# Staged column -> DimCustomer column; any difference opens a new version
TRACKED_COLUMNS = OrderedDict([
    ('FIRSTNAME', 'first_name'),
    ('LASTNAME', 'last_name'),
    ('COMPANY', 'company'),
    ('ADDRESS', 'address'),
    ('CITY', 'city'),
    ('STATE', 'state'),
    ('COUNTRY', 'country'),
    ('POSTALCODE', 'postal_code'),
    ('PHONE', 'phone'),
    ('FAX', 'fax'),
    ('EMAIL', 'email'),
    ('SUPPORTREPID', 'support_rep_id'),
])

ORDERING_COLUMN = 'LASTUPDATE'


class CustomerVersionState(str, Enum):
    CURRENT = 'current'
    SUPERSEDED = 'superseded'


class TransitionAction(str, Enum):
    INSERT = 'insert'
    SUPERSEDE = 'supersede'
    NOOP = 'noop'


@dataclass
class CustomerTransition:
    """Planned change for one natural key."""
    customer_id: int
    action: TransitionAction
    attributes: Dict[str, Any]
    created_by: Optional[str] = None
    created_dt: Optional[date] = None
    previous_sk: Optional[int] = None
    changed_columns: List[str] = field(default_factory=list)


def _attributes_from_staged(row: Dict[str, Any]) -> Dict[str, Any]:
    return {dim_col: to_python(row.get(staged_col)) for staged_col, dim_col in TRACKED_COLUMNS.items()}


def diff_attributes(current: Dict[str, Any], incoming: Dict[str, Any]) -> List[str]:
    """Tracked columns whose value changed (null-safe)."""
    return [
        col for col in TRACKED_COLUMNS.values()
        if to_python(current.get(col)) != to_python(incoming.get(col))
    ]


def final_batch_states(staging_df: pd.DataFrame) -> Tuple[Dict[int, Dict[str, Any]], int]:
    """
    Collapse the batch to one final state per customer_id.

    Source order (SOURCE_ROW) decides unless LASTUPDATE is present and
    disagrees with it; such keys are reordered by LASTUPDATE and counted.
    """
    ordered = staging_df
    if SOURCE_ROW in staging_df.columns:
        ordered = staging_df.sort_values(SOURCE_ROW, kind='stable')

    has_stamp = ORDERING_COLUMN in ordered.columns
    finals: Dict[int, Dict[str, Any]] = {}
    out_of_order = 0

    for customer_id, group in ordered.groupby('CUSTOMERID', sort=False):
        if has_stamp and len(group) > 1:
            stamps = pd.to_datetime(group[ORDERING_COLUMN]).dropna()
            if not stamps.is_monotonic_increasing:
                out_of_order += 1
                logger.warning(f"DimCustomer: batch rows for customer {customer_id} not ordered by "
                               f"{ORDERING_COLUMN}, reordering")
                group = group.assign(**{ORDERING_COLUMN: pd.to_datetime(group[ORDERING_COLUMN])})
                group = group.sort_values(ORDERING_COLUMN, kind='stable', na_position='first')
        finals[int(customer_id)] = group.iloc[-1].to_dict()

    return finals, out_of_order


def plan_customer_changes(
    staging_df: pd.DataFrame,
    current_rows: Dict[int, Dict[str, Any]]
) -> Tuple[List[CustomerTransition], int]:
    """Decide INSERT / SUPERSEDE / NOOP per natural key. Pure; touches no storage."""
    finals, out_of_order = final_batch_states(staging_df)
    transitions = []

    for customer_id, row in finals.items():
        attributes = _attributes_from_staged(row)
        created_by = row.get(CREATED_BY)
        created_dt = to_date(row.get(CREATED_DT))
        current = current_rows.get(customer_id)

        if current is None:
            transitions.append(CustomerTransition(
                customer_id, TransitionAction.INSERT, attributes, created_by, created_dt
            ))
            continue

        changed = diff_attributes(current, attributes)
        action = TransitionAction.SUPERSEDE if changed else TransitionAction.NOOP
        transitions.append(CustomerTransition(
            customer_id, action, attributes, created_by, created_dt,
            previous_sk=current['customer_sk'], changed_columns=changed
        ))

    return transitions, out_of_order


def fetch_current_customers(conn: duckdb.DuckDBPyConnection, customer_ids: List[int]) -> Dict[int, Dict[str, Any]]:
    """Batch fetch CURRENT version rows for the given natural keys."""
    if not customer_ids:
        return {}
    columns = ['customer_id', 'customer_sk'] + list(TRACKED_COLUMNS.values())
    placeholders = ','.join(['?'] * len(customer_ids))
    rows = conn.execute(f"""
        SELECT {', '.join(columns)}
        FROM DimCustomer WHERE customer_id IN ({placeholders}) AND is_current = TRUE
    """, customer_ids).fetchall()
    return {row[0]: dict(zip(columns, row)) for row in rows}


def _insert_version(conn: duckdb.DuckDBPyConnection, customer_sk: int, t: CustomerTransition, today: date) -> None:
    columns = ['customer_sk', 'customer_id'] + list(t.attributes.keys()) + [
        'effective_from', 'effective_to', 'is_current', 'created_by', 'created_dt'
    ]
    values = [customer_sk, t.customer_id] + list(t.attributes.values()) + [
        today, None, True, t.created_by, t.created_dt or today
    ]
    conn.execute(
        f"INSERT INTO DimCustomer ({', '.join(columns)}) VALUES ({', '.join(['?'] * len(columns))})",
        values
    )


def _supersede(conn: duckdb.DuckDBPyConnection, sequence: KeySequence, t: CustomerTransition, today: date) -> int:
    """Close the CURRENT row and open a new one, atomically."""
    new_sk = sequence.next(NAMESPACE)
    conn.execute("BEGIN TRANSACTION")
    try:
        closed = conn.execute("""
            UPDATE DimCustomer
            SET effective_to = ?, is_current = FALSE
            WHERE customer_sk = ? AND is_current = TRUE
        """, [today - timedelta(days=1), t.previous_sk]).fetchone()[0]
        if closed != 1:
            raise ConsistencyError(
                f"expected to close 1 current row for customer {t.customer_id}, closed {closed}",
                table='DimCustomer'
            )
        _insert_version(conn, new_sk, t, today)
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    return new_sk


def process_dim_customer(
    conn: duckdb.DuckDBPyConnection,
    staging_df: pd.DataFrame,
    sequence: KeySequence,
    today: Optional[date] = None
) -> Dict[str, int]:
    """
    Process DimCustomer with SCD Type 2.

    Compare columns: TRACKED_COLUMNS. Only the final state of a key within
    the batch is materialized.
    """
    stats = {'inserted': 0, 'updated': 0, 'unchanged': 0, 'out_of_order': 0}
    today = today or date.today()

    if staging_df.empty:
        return stats

    customer_ids = [int(c) for c in staging_df['CUSTOMERID'].dropna().unique().tolist()]

    with sequence.writer(NAMESPACE):
        current_rows = fetch_current_customers(conn, customer_ids)
        transitions, stats['out_of_order'] = plan_customer_changes(staging_df, current_rows)

        for t in transitions:
            if t.action == TransitionAction.INSERT:
                _insert_version(conn, sequence.next(NAMESPACE), t, today)
                stats['inserted'] += 1
            elif t.action == TransitionAction.SUPERSEDE:
                _supersede(conn, sequence, t, today)
                logger.debug(f"Customer {t.customer_id} changed: {', '.join(t.changed_columns)}")
                stats['updated'] += 1
            else:
                stats['unchanged'] += 1

    logger.info(f"DimCustomer: inserted={stats['inserted']}, updated={stats['updated']}, "
                f"unchanged={stats['unchanged']}, out_of_order={stats['out_of_order']}")
    return stats


def find_inconsistent_customers(conn: duckdb.DuckDBPyConnection) -> List[Tuple[int, int]]:
    """(customer_id, current_row_count) for keys without exactly one CURRENT row."""
    return conn.execute("""
        SELECT customer_id, COUNT(*) FILTER (WHERE is_current) AS current_rows
        FROM DimCustomer
        GROUP BY customer_id
        HAVING COUNT(*) FILTER (WHERE is_current) <> 1
        ORDER BY customer_id
    """).fetchall()


def check_customer_history(conn: duckdb.DuckDBPyConnection) -> None:
    """Raise ConsistencyError if any natural key has zero or several CURRENT rows."""
    broken = find_inconsistent_customers(conn)
    if broken:
        ids = [customer_id for customer_id, _ in broken]
        logger.error(f"DimCustomer inconsistent for {len(ids)} customers: {ids[:20]}")
        raise ConsistencyError(
            f"{len(ids)} customers without exactly one current row",
            table='DimCustomer',
            details={'customers': dict(broken)}
        )


def repair_customer_history(conn: duckdb.DuckDBPyConnection) -> int:
    """
    Repair broken keys: the latest version (effective_from, customer_sk)
    becomes CURRENT, earlier versions are closed the day before their
    successor starts. Returns number of repaired keys.
    """
    broken = find_inconsistent_customers(conn)
    for customer_id, _ in broken:
        versions = conn.execute("""
            SELECT customer_sk, effective_from
            FROM DimCustomer WHERE customer_id = ?
            ORDER BY effective_from, customer_sk
        """, [customer_id]).fetchall()

        conn.execute("BEGIN TRANSACTION")
        try:
            for (sk, _), (_, next_from) in zip(versions, versions[1:]):
                conn.execute("""
                    UPDATE DimCustomer SET is_current = FALSE, effective_to = ?
                    WHERE customer_sk = ?
                """, [next_from - timedelta(days=1), sk])
            conn.execute("""
                UPDATE DimCustomer SET is_current = TRUE, effective_to = NULL
                WHERE customer_sk = ?
            """, [versions[-1][0]])
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        logger.warning(f"Repaired DimCustomer history for customer {customer_id} ({len(versions)} versions)")

    return len(broken)
