"""
ETL Pipeline: Source -> Staging -> DWH.
Main orchestrator for ETL process.
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import duckdb
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

from chinook_dwh.config import PipelineConfig, get_pg_conn_string
from chinook_dwh.etl.errors import (
    ConsistencyError,
    PipelineAborted,
    PipelineError,
    StagingIncompleteError,
    TransientIOError
)
from chinook_dwh.etl.staging import (
    STAGED_TABLES,
    is_stage_complete,
    load_rejected_parents,
    load_staged,
    run_staging_pipeline
)
from chinook_dwh.etl.summary import RunSummary
from chinook_dwh.quality import QualityGate, ValidationHardFailError, WarehouseValidator
from chinook_dwh.storage import NAMESPACES, KeySequence, PostgresRowSource, RowSource
from chinook_dwh.storage.minio import (
    backup_duckdb,
    download_duckdb,
    get_duckdb_connection,
    upload_duckdb
)
from .cache import init_dimension_caches
from .dimensions import (
    check_customer_history,
    process_dim_album,
    process_dim_artist,
    process_dim_customer,
    process_dim_date,
    process_dim_invoice,
    process_dim_time,
    repair_customer_history
)
from .facts import process_fact_sales

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PATH = Path(__file__).parent / 'sql' / 'dwh_schema.sql'
MAX_RETRY_WAIT_SECONDS = 60

AbortCheck = Optional[Callable[[], bool]]


def _setup_schema(conn: duckdb.DuckDBPyConnection, schema_path: Path = DEFAULT_SCHEMA_PATH) -> None:
    """
    Setup schema - only create sequences and tables if they don't exist.
    Does NOT drop existing tables to preserve data.
    """
    with open(schema_path, 'r', encoding='utf-8') as f:
        sql = f.read()

    # Remove comments
    sql = re.sub(r'--.*\n', '', sql)
    sql = re.sub(r'/\*.*?\*/', '', sql, flags=re.DOTALL)

    statements = [s.strip() for s in sql.split(';') if s.strip()]
    for stmt in statements:
        conn.execute(stmt)

    KeySequence(conn).ensure_all()

    logger.info(f"Schema setup complete ({len(statements)} statements, {len(NAMESPACES)} sequences)")


def build_retry(config: PipelineConfig) -> Retrying:
    """Bounded exponential backoff, TransientIOError only. Logic errors are never retried."""
    return Retrying(
        stop=stop_after_attempt(config.max_retries),
        wait=wait_exponential(multiplier=config.retry_backoff_seconds, max=MAX_RETRY_WAIT_SECONDS),
        retry=retry_if_exception_type(TransientIOError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def _retrying_call(config: PipelineConfig) -> Callable[..., Any]:
    """Fresh Retrying per call; extraction threads must not share retry state."""
    def call(fn, *args, **kwargs):
        return build_retry(config)(fn, *args, **kwargs)
    return call


def _checkpoint(should_abort: AbortCheck, stage: str) -> None:
    if should_abort is not None and should_abort():
        logger.warning(f"Abort requested before stage '{stage}'")
        raise PipelineAborted(f"run aborted before stage '{stage}'")


def _ensure_consistent(conn: duckdb.DuckDBPyConnection, config: PipelineConfig, summary: RunSummary) -> None:
    """Customer history must be consistent before anything is mutated."""
    try:
        check_customer_history(conn)
    except ConsistencyError:
        if not config.auto_repair:
            raise
        repaired = repair_customer_history(conn)
        summary.add_stage('repair', {'repaired_customers': repaired})
        check_customer_history(conn)


def _load_warehouse_stages(
    conn: duckdb.DuckDBPyConnection,
    config: PipelineConfig,
    summary: RunSummary,
    should_abort: AbortCheck
) -> None:
    """Calendar -> dimensions -> caches + fact -> validation, for the staged run."""
    sequence = KeySequence(conn)
    today = config.today()
    run_id = config.run_id

    # Calendar
    _checkpoint(should_abort, 'calendar')
    for name, stats in (
        ('dim_date', process_dim_date(conn, sequence, config.calendar_start_year, config.calendar_span_years)),
        ('dim_time', process_dim_time(conn, sequence)),
    ):
        summary.add_stage(name, stats, written=stats['inserted'])

    # Dimensions, serialized
    _checkpoint(should_abort, 'dimensions')
    logger.info("Processing dimensions...")
    for name, processor, table in (
        ('dim_artist', process_dim_artist, 'ARTIST'),
        ('dim_album', process_dim_album, 'ALBUM'),
        ('dim_invoice', process_dim_invoice, 'INVOICE'),
    ):
        stats = processor(conn, load_staged(conn, table, run_id), sequence)
        summary.add_stage(name, stats, written=stats['inserted'])

    stats = process_dim_customer(conn, load_staged(conn, 'CUSTOMER', run_id), sequence, today=today)
    summary.add_stage('dim_customer', stats, written=stats['inserted'] + stats['updated'])

    # Facts, after every dimension it depends on
    _checkpoint(should_abort, 'facts')
    logger.info("Processing facts...")
    caches = init_dimension_caches(conn)
    stats = process_fact_sales(
        conn,
        load_staged(conn, 'INVOICELINE', run_id),
        load_staged(conn, 'INVOICE', run_id),
        caches,
        sequence,
        config.origin_tag,
        run_id,
        today,
        incomplete_invoices=load_rejected_parents(conn, 'INVOICELINE', run_id)
    )
    summary.add_stage('fact_sales', stats, written=stats['inserted'], rejected_lookup=stats['rejected_lookup'])

    # Post-load validation
    _checkpoint(should_abort, 'validation')
    result = WarehouseValidator().validate(conn, run_id=run_id)
    gate = QualityGate().evaluate(result)
    summary.add_stage('validation', {
        'status': gate.status,
        'message': gate.message,
        'reconciled_invoices': result.reconciled_invoices,
        'fact_amount': result.fact_amount,
        'staged_amount': result.staged_amount,
    })


def _finish(summary: RunSummary, error: Optional[BaseException]) -> None:
    if error is None:
        summary.status = 'success'
    else:
        summary.status = 'aborted' if isinstance(error, PipelineAborted) else 'failed'
        summary.error = str(error)
    summary.log()


def run_pipeline(
    conn: duckdb.DuckDBPyConnection,
    source: RowSource,
    config: Optional[PipelineConfig] = None,
    should_abort: AbortCheck = None,
    summary: Optional[RunSummary] = None
) -> RunSummary:
    """
    Run the full pipeline against an open warehouse connection.

    Flow:
    1. Setup schema (create if absent)
    2. Check customer history consistency (optional auto-repair)
    3. Staging: parallel extraction, serialized landing, retried on TransientIOError
    4. Calendar dimensions
    5. Artist, album, invoice, customer dimensions
    6. Caches + FactSales
    7. Post-load validation

    Raises on failure; the summary is logged either way and, when passed
    in, carries the failed status.
    """
    config = config or PipelineConfig()
    summary = summary or RunSummary(run_id=config.run_id)
    error = None

    try:
        _checkpoint(should_abort, 'schema')
        _setup_schema(conn)

        _checkpoint(should_abort, 'consistency')
        _ensure_consistent(conn, config, summary)

        _checkpoint(should_abort, 'staging')
        logger.info("Processing staging...")
        staging_stats = run_staging_pipeline(conn, source, config, retry=_retrying_call(config))
        summary.add_stage(
            'staging', staging_stats,
            processed=sum(s['processed'] for s in staging_stats.values()),
            rejected_schema=sum(s['rejected_schema'] for s in staging_stats.values())
        )

        _load_warehouse_stages(conn, config, summary, should_abort)
    except Exception as e:
        error = e
        raise
    finally:
        _finish(summary, error)

    return summary


def load_warehouse(
    conn: duckdb.DuckDBPyConnection,
    config: PipelineConfig,
    should_abort: AbortCheck = None,
    summary: Optional[RunSummary] = None
) -> RunSummary:
    """
    Resume a run from its staged extract: warehouse stages only.
    Raises StagingIncompleteError if the run's staging is partial.
    """
    summary = summary or RunSummary(run_id=config.run_id)
    error = None

    try:
        if not is_stage_complete(conn, config.run_id, STAGED_TABLES):
            raise StagingIncompleteError(f"staged extract of run {config.run_id} is incomplete")

        _setup_schema(conn)
        _ensure_consistent(conn, config, summary)
        _load_warehouse_stages(conn, config, summary, should_abort)
    except Exception as e:
        error = e
        raise
    finally:
        _finish(summary, error)

    return summary


def run_etl(
    pg_conn_string: Optional[str] = None,
    run_id: Optional[str] = None,
    force_new: bool = False
) -> Dict[str, Any]:
    """
    Run full ETL pipeline: PostgreSQL -> Staging -> DWH (MinIO).

    Flow:
    1. Download DuckDB from MinIO (or create new), retried
    2. Backup to MinIO
    3. Run pipeline against the PostgreSQL source
    4. Upload DuckDB back to MinIO, retried
    """
    start_time = datetime.now()
    config = PipelineConfig.from_env(run_id=run_id)
    summary = RunSummary(run_id=config.run_id)
    retry = _retrying_call(config)
    result = {
        'success': False,
        'run_id': config.run_id,
        'start_time': start_time.isoformat(),
        'stats': {}
    }

    local_db_path = None

    try:
        logger.info("=" * 60)
        logger.info(f"ETL START: {start_time} (run {config.run_id})")
        logger.info("=" * 60)

        # 1. Download DuckDB from MinIO
        local_db_path = retry(download_duckdb, force_new=force_new)

        # 2. Backup existing database
        if not force_new:
            result['backup_object'] = backup_duckdb(local_db_path)

        # 3. Run pipeline
        source = PostgresRowSource(pg_conn_string or get_pg_conn_string())
        with retry(get_duckdb_connection, local_db_path) as conn:
            run_pipeline(conn, source, config, summary=summary)

        # 4. Upload DuckDB back to MinIO
        retry(upload_duckdb, local_db_path)

        result['success'] = True
        result['message'] = 'ETL completed successfully'

    except (PipelineError, ValidationHardFailError, duckdb.Error) as e:
        logger.error(f"ETL failed: {e}", exc_info=True)
        result['message'] = str(e)

    finally:
        result['stats'] = summary.to_dict()

        if local_db_path:
            for ext in ['', '.wal']:
                path = local_db_path + ext
                if os.path.exists(path):
                    try:
                        os.remove(path)
                    except OSError as e:
                        logger.warning(f"Could not remove {path}: {e}")

        end_time = datetime.now()
        result['end_time'] = end_time.isoformat()
        result['duration_seconds'] = (end_time - start_time).total_seconds()

        logger.info("=" * 60)
        logger.info(f"ETL END: Duration {result['duration_seconds']:.2f}s")
        logger.info(f"Status: {'SUCCESS' if result['success'] else 'FAILED'}")
        logger.info("=" * 60)

    return result


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    etl_result = run_etl()
    logger.info(f"Result: {etl_result['message']}")
