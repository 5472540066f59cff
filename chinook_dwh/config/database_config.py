"""Source database configuration (operational Chinook PostgreSQL)"""
import os

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "postgres"),
    "port": int(os.getenv("DB_PORT", "5432")),
    "user": os.getenv("DB_USER", "chinook"),
    "password": os.getenv("DB_PASSWORD", "chinook"),
    "database": os.getenv("DB_NAME", "chinook"),
}

# Schema holding the operational tables (artist, album, customer, ...)
SOURCE_SCHEMA = os.getenv("SOURCE_SCHEMA", "public")


def get_pg_conn_string() -> str:
    """Build libpq connection string from DB_CONFIG"""
    return os.getenv(
        "PG_CONN_STRING",
        "postgresql://{user}:{password}@{host}:{port}/{database}".format(**DB_CONFIG),
    )
