"""Configuration exports"""
from .database_config import DB_CONFIG, SOURCE_SCHEMA, get_pg_conn_string
from .storage_config import MINIO_CONFIG
from .quality_config import DQ_RECONCILIATION_TOLERANCE
from .pipeline_config import PipelineConfig, new_run_id

__all__ = [
    'DB_CONFIG',
    'SOURCE_SCHEMA',
    'get_pg_conn_string',
    'MINIO_CONFIG',
    'DQ_RECONCILIATION_TOLERANCE',
    'PipelineConfig',
    'new_run_id',
]
