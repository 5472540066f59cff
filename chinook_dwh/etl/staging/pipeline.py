"""Staging ETL Pipeline - Extract source tables, audit-stamp and land them in DuckDB"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Set

import duckdb
import pandas as pd

from chinook_dwh.config import PipelineConfig
from chinook_dwh.storage import DuckDBRowSink, RowSource, INSERT, UPSERT
from .schemas import RUN_ID, SOURCE_ROW, STAGED_TABLES, TABLE_SCHEMAS, get_schema, staging_ddl
from .stamper import AuditStamper, StampResult

logger = logging.getLogger(__name__)

STAGE_RUNS_TABLE = 'staging.stage_runs'
REJECTED_PARENTS_TABLE = 'staging.rejected_parents'

Retry = Callable[..., Any]


def setup_staging_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create staging schema and tables if absent."""
    conn.execute("CREATE SCHEMA IF NOT EXISTS staging")
    for schema in TABLE_SCHEMAS.values():
        conn.execute(staging_ddl(schema))
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {STAGE_RUNS_TABLE} (
            RUN_ID VARCHAR NOT NULL,
            TABLE_NAME VARCHAR NOT NULL,
            ROW_COUNT INTEGER NOT NULL,
            REJECTED INTEGER NOT NULL,
            COMPLETED_AT TIMESTAMP NOT NULL
        )
    """)
    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {REJECTED_PARENTS_TABLE} (
            RUN_ID VARCHAR NOT NULL,
            TABLE_NAME VARCHAR NOT NULL,
            PARENT_KEY INTEGER NOT NULL
        )
    """)


def _no_retry(fn, *args, **kwargs):
    return fn(*args, **kwargs)


def _extract_table(source: RowSource, stamper: AuditStamper, table: str) -> StampResult:
    """ Read and stamp one table; list() drains the lazy source so I/O errors surface here """
    return stamper.stamp(table, list(source.read(table)))


def land_stamped_table(conn: duckdb.DuckDBPyConnection, result: StampResult, run_id: str) -> int:
    """
    Land one stamped table atomically: clear any partial rows of the same run,
    insert rows and rejected parent keys, then mark the table complete for the
    run. Safe to repeat after a failure.
    """
    schema = get_schema(result.table)
    sink = DuckDBRowSink(conn)

    conn.execute("BEGIN TRANSACTION")
    try:
        conn.execute(f"DELETE FROM {schema.staging_table} WHERE {RUN_ID} = ?", [run_id])
        written = sink.write(schema.staging_table, result.rows, mode=INSERT)
        conn.execute(
            f"DELETE FROM {REJECTED_PARENTS_TABLE} WHERE RUN_ID = ? AND TABLE_NAME = ?",
            [run_id, schema.name]
        )
        sink.write(REJECTED_PARENTS_TABLE, [
            {'RUN_ID': run_id, 'TABLE_NAME': schema.name, 'PARENT_KEY': key}
            for key in sorted(result.rejected_parents)
        ], mode=INSERT)
        sink.write(STAGE_RUNS_TABLE, [{
            'RUN_ID': run_id,
            'TABLE_NAME': schema.name,
            'ROW_COUNT': written,
            'REJECTED': result.rejected,
            'COMPLETED_AT': datetime.now(),
        }], mode=UPSERT, key_columns=['RUN_ID', 'TABLE_NAME'])
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise

    return written


def run_staging_pipeline(
    conn: duckdb.DuckDBPyConnection,
    source: RowSource,
    config: PipelineConfig,
    tables: Sequence[str] = STAGED_TABLES,
    retry: Optional[Retry] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Run staging for all tables.

    Extraction + stamping run concurrently per table (no shared state);
    landing is serialized on the DuckDB connection.
    """
    retry = retry or _no_retry
    stamper = AuditStamper(config.origin_tag, config.run_id, config.clock)
    setup_staging_schema(conn)

    logger.info(f"Staging run {config.run_id}: {', '.join(tables)}")

    workers = max(1, min(config.staging_workers, len(tables)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='extract') as pool:
        futures = {
            table: pool.submit(retry, _extract_table, source, stamper, table)
            for table in tables
        }
        # Propagate the first failure in table order
        results = {table: future.result() for table, future in futures.items()}

    stats: Dict[str, Dict[str, Any]] = {}
    for table in tables:
        result = results[table]
        written = retry(land_stamped_table, conn, result, config.run_id)
        stats[table] = {
            'processed': result.processed,
            'staged': written,
            'rejected_schema': result.rejected,
            'unexpected_columns': sorted(result.unexpected_columns),
            'rejected_parents': sorted(result.rejected_parents),
        }

    total = sum(s['staged'] for s in stats.values())
    rejected = sum(s['rejected_schema'] for s in stats.values())
    logger.info(f"Staging completed: staged={total}, rejected={rejected}")
    return stats


def is_stage_complete(conn: duckdb.DuckDBPyConnection, run_id: str,
                      tables: Iterable[str] = STAGED_TABLES) -> bool:
    """True when every table has a completion marker for the run."""
    setup_staging_schema(conn)
    done = {r[0] for r in conn.execute(
        f"SELECT TABLE_NAME FROM {STAGE_RUNS_TABLE} WHERE RUN_ID = ?", [run_id]
    ).fetchall()}
    missing = {t.upper() for t in tables} - done
    if missing:
        logger.warning(f"Run {run_id} staging incomplete, missing: {sorted(missing)}")
    return not missing


def load_staged(conn: duckdb.DuckDBPyConnection, table: str, run_id: str) -> pd.DataFrame:
    """Load staged rows of one run, in source order."""
    schema = get_schema(table)
    return conn.execute(
        f"SELECT * FROM {schema.staging_table} WHERE {RUN_ID} = ? ORDER BY {SOURCE_ROW}",
        [run_id]
    ).fetchdf()


def get_staging_stats(conn: duckdb.DuckDBPyConnection, run_id: str) -> Dict[str, Any]:
    """Get staged / rejected counts per table for a run"""
    rows = conn.execute(f"""
        SELECT TABLE_NAME, ROW_COUNT, REJECTED, COMPLETED_AT
        FROM {STAGE_RUNS_TABLE}
        WHERE RUN_ID = ?
        ORDER BY TABLE_NAME
    """, [run_id]).fetchall()

    return {
        name: {"staged": count, "rejected": rejected, "completed_at": completed_at}
        for name, count, rejected, completed_at in rows
    }


def load_rejected_parents(conn: duckdb.DuckDBPyConnection, table: str, run_id: str) -> Set[int]:
    """Parent keys with at least one row of `table` rejected during the run."""
    schema = get_schema(table)
    return {r[0] for r in conn.execute(
        f"SELECT PARENT_KEY FROM {REJECTED_PARENTS_TABLE} WHERE RUN_ID = ? AND TABLE_NAME = ?",
        [run_id, schema.name]
    ).fetchall()}
