"""ETL Metrics Logger - Track pipeline run duration and row counts."""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import psycopg2

logger = logging.getLogger(__name__)


@dataclass
class ETLMetrics:
    """ETL task metrics."""
    dag_id: str
    task_id: str
    dag_run_id: Optional[str] = None
    run_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0
    rows_processed: int = 0
    rows_written: int = 0
    rows_rejected_schema: int = 0
    rows_rejected_lookup: int = 0
    status: str = 'running'
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def throughput(self) -> float:
        """Rows written per second."""
        if self.duration_seconds > 0:
            return self.rows_written / self.duration_seconds
        return 0.0

    def update_from_summary(self, summary: Dict[str, Any]) -> None:
        """Copy counters from a RunSummary.to_dict() payload."""
        self.run_id = summary.get('run_id', self.run_id)
        self.rows_processed = summary.get('processed', 0)
        self.rows_written = summary.get('written', 0)
        rejected = summary.get('rejected', {})
        self.rows_rejected_schema = rejected.get('schema', 0)
        self.rows_rejected_lookup = rejected.get('lookup', 0)


class ETLMetricsLogger:
    """Logger for ETL metrics to monitoring.etl_metrics table."""

    def __init__(self, pg_conn_string: str):
        self.conn_string = pg_conn_string

    def log(self, metrics: ETLMetrics) -> bool:
        """Log metrics to etl_metrics table. Returns True on success."""
        try:
            with psycopg2.connect(self.conn_string) as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        INSERT INTO monitoring.etl_metrics (
                            dag_id, task_id, dag_run_id, run_id, status,
                            duration_seconds, rows_processed, rows_written,
                            rows_rejected_schema, rows_rejected_lookup, throughput,
                            error_message, metadata, started_at, completed_at
                        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """, (
                        metrics.dag_id, metrics.task_id, metrics.dag_run_id, metrics.run_id,
                        metrics.status, metrics.duration_seconds,
                        metrics.rows_processed, metrics.rows_written,
                        metrics.rows_rejected_schema, metrics.rows_rejected_lookup,
                        metrics.throughput, metrics.error_message,
                        json.dumps(metrics.metadata, default=str) if metrics.metadata else None,
                        metrics.start_time, metrics.end_time
                    ))
                conn.commit()
            logger.info(f"ETL metrics logged: {metrics.task_id} - {metrics.rows_written} rows "
                        f"in {metrics.duration_seconds:.2f}s")
            return True
        except psycopg2.Error as e:
            # Metrics are best effort; the run result is authoritative
            logger.warning(f"Failed to log ETL metrics: {e}")
            return False

    @contextmanager
    def track(self, dag_id: str, task_id: str, dag_run_id: str = None):
        """Context manager to track task duration and metrics."""
        metrics = ETLMetrics(
            dag_id=dag_id,
            task_id=task_id,
            dag_run_id=dag_run_id,
            start_time=datetime.now()
        )
        start = time.time()

        try:
            yield metrics
            if metrics.status == 'running':
                metrics.status = 'success'
        except Exception as e:
            metrics.status = 'failed'
            metrics.error_message = str(e)
            raise
        finally:
            metrics.end_time = datetime.now()
            metrics.duration_seconds = time.time() - start
            self.log(metrics)
