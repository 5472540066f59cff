"""Storage configuration (MinIO)"""
import os

MINIO_CONFIG = {
    "endpoint": os.getenv("MINIO_ENDPOINT", "minio:9000"),
    "access_key": os.getenv("MINIO_ACCESS_KEY", "minioadmin"),
    "secret_key": os.getenv("MINIO_SECRET_KEY", "minioadmin"),
    "warehouse_bucket": os.getenv("MINIO_WAREHOUSE_BUCKET", "chinook-warehouse"),
    "backup_bucket": os.getenv("MINIO_BACKUP_BUCKET", "chinook-backup"),
    "secure": os.getenv("MINIO_SECURE", "false").lower() == "true",
}
