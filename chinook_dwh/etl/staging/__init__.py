"""Staging ETL module exports"""
from .schemas import STAGED_TABLES, TABLE_SCHEMAS, get_schema
from .stamper import AuditStamper, StampResult, normalize_column_name
from .pipeline import (
    run_staging_pipeline,
    land_stamped_table,
    is_stage_complete,
    load_staged,
    load_rejected_parents,
    get_staging_stats,
    setup_staging_schema
)

__all__ = [
    'STAGED_TABLES',
    'TABLE_SCHEMAS',
    'get_schema',
    'AuditStamper',
    'StampResult',
    'normalize_column_name',
    'run_staging_pipeline',
    'land_stamped_table',
    'is_stage_complete',
    'load_staged',
    'load_rejected_parents',
    'get_staging_stats',
    'setup_staging_schema',
]
