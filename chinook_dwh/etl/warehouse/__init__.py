"""
DWH ETL Module.

Handles ETL from the staged Chinook extract to the DuckDB Star Schema.
The DuckDB file is stored on MinIO (S3-compatible object storage).

Structure:
├── pipeline.py          - Main ETL orchestrator
├── cache.py             - Dimension caches
├── values.py            - pandas/numpy -> Python value helpers
├── dimensions/          - Dimension processors
│   ├── calendar.py      - DimDate, DimTime (pre-materialized)
│   ├── insert_only.py   - DimArtist, DimAlbum, DimInvoice
│   └── customer.py      - DimCustomer (SCD2)
└── facts/               - Fact processors
    └── sales.py         - FactSales (invoice grain)

Storage: chinook_dwh/storage/minio.py
"""

from .pipeline import run_etl, run_pipeline, load_warehouse, build_retry
from .cache import init_dimension_caches, resolve_key
from .dimensions import (
    process_dim_date,
    process_dim_time,
    process_dim_artist,
    process_dim_album,
    process_dim_invoice,
    process_dim_customer,
    check_customer_history,
    repair_customer_history
)
from .facts import process_fact_sales

__all__ = [
    'run_etl',
    'run_pipeline',
    'load_warehouse',
    'build_retry',
    'init_dimension_caches',
    'resolve_key',
    'process_dim_date',
    'process_dim_time',
    'process_dim_artist',
    'process_dim_album',
    'process_dim_invoice',
    'process_dim_customer',
    'check_customer_history',
    'repair_customer_history',
    'process_fact_sales',
]
