"""
MinIO storage operations.

Buckets:
- chinook-warehouse: DWH DuckDB file (dimensions, facts, staging, sequences)
- chinook-backup: DuckDB backups
"""

import logging
import os
from datetime import datetime
from typing import Optional

import duckdb
from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from chinook_dwh.config import MINIO_CONFIG
from chinook_dwh.etl.errors import TransientIOError

logger = logging.getLogger(__name__)

WAREHOUSE_BUCKET = MINIO_CONFIG["warehouse_bucket"]
BACKUP_BUCKET = MINIO_CONFIG["backup_bucket"]

DUCKDB_OBJECT = 'dwh/chinook.duckdb'
BACKUP_PREFIX = 'dwh_backups'
LOCAL_TEMP_DIR = os.getenv('DWH_LOCAL_DIR', '/tmp/chinook_dwh')
KEEP_BACKUPS = 5


def get_minio_client() -> Minio:
    """Get MinIO client."""
    return Minio(
        MINIO_CONFIG["endpoint"],
        access_key=MINIO_CONFIG["access_key"],
        secret_key=MINIO_CONFIG["secret_key"],
        secure=MINIO_CONFIG["secure"]
    )


def _ensure_bucket(client: Minio, bucket: str) -> None:
    if not client.bucket_exists(bucket):
        client.make_bucket(bucket)
        logger.info(f"Created bucket: {bucket}")


def local_duckdb_path() -> str:
    return os.path.join(LOCAL_TEMP_DIR, 'chinook.duckdb')


def download_duckdb(force_new: bool = False) -> str:
    """Download DuckDB file from MinIO. Returns local path."""
    os.makedirs(LOCAL_TEMP_DIR, exist_ok=True)
    local_path = local_duckdb_path()

    for ext in ['', '.wal', '.tmp']:
        path = local_path + ext
        if os.path.exists(path):
            os.remove(path)

    if force_new:
        logger.info("Creating fresh DuckDB")
        return local_path

    try:
        client = get_minio_client()
        try:
            client.stat_object(WAREHOUSE_BUCKET, DUCKDB_OBJECT)
        except S3Error as e:
            if e.code in ('NoSuchKey', 'NoSuchBucket', 'NoSuchObject'):
                logger.info("No existing DuckDB, will create new")
                return local_path
            raise
        client.fget_object(WAREHOUSE_BUCKET, DUCKDB_OBJECT, local_path)
        logger.info("Downloaded DuckDB from MinIO")
        return local_path
    except (S3Error, HTTPError) as e:
        raise TransientIOError(f"Download DuckDB failed: {e}") from e


def upload_duckdb(local_path: str) -> None:
    """Upload DuckDB file to MinIO."""
    try:
        client = get_minio_client()
        _ensure_bucket(client, WAREHOUSE_BUCKET)
        client.fput_object(WAREHOUSE_BUCKET, DUCKDB_OBJECT, local_path)
        logger.info("Uploaded DuckDB to MinIO")
    except (S3Error, HTTPError) as e:
        raise TransientIOError(f"Upload DuckDB failed: {e}") from e


def backup_duckdb(local_path: str) -> Optional[str]:
    """Backup DuckDB to MinIO. Keeps last KEEP_BACKUPS backups."""
    if not os.path.exists(local_path):
        return None

    try:
        client = get_minio_client()
        _ensure_bucket(client, BACKUP_BUCKET)

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        backup_object = f'{BACKUP_PREFIX}/chinook_{timestamp}.duckdb'

        client.fput_object(BACKUP_BUCKET, backup_object, local_path)
        logger.info(f"Backed up DuckDB: {backup_object}")

        objects = list(client.list_objects(BACKUP_BUCKET, prefix=BACKUP_PREFIX))
        backups = sorted([o.object_name for o in objects if o.object_name.endswith('.duckdb')])
        while len(backups) > KEEP_BACKUPS:
            client.remove_object(BACKUP_BUCKET, backups.pop(0))

        return backup_object
    except (S3Error, HTTPError) as e:
        # A missed backup does not block the load
        logger.error(f"Backup DuckDB error: {e}")
        return None


def get_duckdb_connection(local_path: Optional[str] = None) -> duckdb.DuckDBPyConnection:
    """Get DuckDB connection from local temp file."""
    if local_path is None:
        local_path = local_duckdb_path()
    if local_path != ':memory:':
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
    try:
        return duckdb.connect(local_path)
    except duckdb.IOException as e:
        raise TransientIOError(f"Cannot open DuckDB at {local_path}: {e}") from e


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    minio_client = get_minio_client()
    for bucket_name in (WAREHOUSE_BUCKET, BACKUP_BUCKET):
        _ensure_bucket(minio_client, bucket_name)
