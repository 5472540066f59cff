"""
DimDate / DimTime calendar dimension processors.

Both are pre-materialized for the full horizon and read-only afterwards.
Lookups are exact matches and fail with DimensionLookupError; no late or
"unknown" member is ever inserted.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Union

import duckdb

from chinook_dwh.storage import KeySequence

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']
MONTH_NAMES = ['January', 'February', 'March', 'April', 'May', 'June', 'July',
               'August', 'September', 'October', 'November', 'December']
MINUTES_PER_DAY = 24 * 60


def format_time_key(value: Union[datetime, time, str]) -> str:
    """Lookup key of DimTime: 24-hour 'HH:MM'."""
    if isinstance(value, (datetime, time)):
        return value.strftime('%H:%M')
    text = str(value).strip()
    parsed = datetime.strptime(text[:5], '%H:%M')
    return parsed.strftime('%H:%M')


def build_date_row(current: date) -> Dict[str, Any]:
    """All DimDate attributes, derived arithmetically from the date."""
    quarter = (current.month - 1) // 3 + 1
    day_of_week = current.isoweekday()
    return {
        'date_value': current,
        'day': current.day,
        'month': current.month,
        'month_name': MONTH_NAMES[current.month - 1],
        'quarter': quarter,
        'quarter_name': f'Q{quarter}',
        'year': current.year,
        'week_of_year': current.isocalendar()[1],
        'day_of_week': day_of_week,
        'weekday_name': WEEKDAY_NAMES[day_of_week - 1],
        'is_weekend': day_of_week >= 6,
        'year_month': current.strftime('%Y-%m'),
    }


def build_time_row(minute_of_day: int) -> Dict[str, Any]:
    hour, minute = divmod(minute_of_day, 60)
    return {
        'time_value': f'{hour:02d}:{minute:02d}',
        'hour': hour,
        'minute': minute,
        'hour_12': hour % 12 or 12,
        'am_pm': 'AM' if hour < 12 else 'PM',
    }


def _insert_missing(
    conn: duckdb.DuckDBPyConnection,
    sequence: KeySequence,
    table: str,
    key_column: str,
    natural_column: str,
    namespace: str,
    rows: List[Dict[str, Any]],
) -> Dict[str, int]:
    """Create-if-absent keyed by the natural calendar value."""
    existing = {r[0] for r in conn.execute(f"SELECT {natural_column} FROM {table}").fetchall()}
    missing = [r for r in rows if r[natural_column] not in existing]
    stats = {'inserted': len(missing), 'unchanged': len(rows) - len(missing)}

    if missing:
        keys = sequence.next_block(namespace, len(missing))
        columns = [key_column] + list(missing[0].keys())
        conn.executemany(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(['?'] * len(columns))})",
            [[sk] + list(row.values()) for sk, row in zip(keys, missing)]
        )

    return stats


def process_dim_date(
    conn: duckdb.DuckDBPyConnection,
    sequence: KeySequence,
    start_year: int,
    span_years: int
) -> Dict[str, int]:
    """
    Process DimDate for the configured horizon.

    Range: Jan 1 of start_year .. Dec 31 of start_year + span_years - 1.
    """
    if span_years < 1:
        raise ValueError(f"span_years must be >= 1, got {span_years}")

    first = date(start_year, 1, 1)
    last = date(start_year + span_years - 1, 12, 31)
    logger.debug(f"DimDate range: {first} to {last}")

    rows = []
    current = first
    while current <= last:
        rows.append(build_date_row(current))
        current += timedelta(days=1)

    with sequence.writer('dim_date'):
        stats = _insert_missing(conn, sequence, 'DimDate', 'date_sk', 'date_value', 'dim_date', rows)

    logger.info(f"DimDate: inserted={stats['inserted']}, unchanged={stats['unchanged']}")
    return stats


def process_dim_time(conn: duckdb.DuckDBPyConnection, sequence: KeySequence) -> Dict[str, int]:
    """Process DimTime: one row per minute of the day (1440 rows)."""
    rows = [build_time_row(m) for m in range(MINUTES_PER_DAY)]

    with sequence.writer('dim_time'):
        stats = _insert_missing(conn, sequence, 'DimTime', 'time_sk', 'time_value', 'dim_time', rows)

    logger.info(f"DimTime: inserted={stats['inserted']}, unchanged={stats['unchanged']}")
    return stats
