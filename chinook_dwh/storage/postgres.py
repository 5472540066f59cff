"""PostgreSQL storage operations - operational Chinook source"""
import logging
from typing import Any, Dict, Iterator, Optional

import psycopg2
from psycopg2 import sql

from chinook_dwh.config import DB_CONFIG, SOURCE_SCHEMA
from chinook_dwh.etl.errors import TransientIOError

logger = logging.getLogger(__name__)

# Staged table name -> source table name (classic Chinook script, quoted PascalCase)
SOURCE_TABLES = {
    'ARTIST': 'Artist',
    'ALBUM': 'Album',
    'CUSTOMER': 'Customer',
    'INVOICE': 'Invoice',
    'INVOICELINE': 'InvoiceLine',
}

FETCH_SIZE = 2000


def get_db_connection(conn_string: Optional[str] = None):
    """Get PostgreSQL connection"""
    try:
        if conn_string:
            return psycopg2.connect(conn_string)
        return psycopg2.connect(
            host=DB_CONFIG["host"],
            port=DB_CONFIG["port"],
            user=DB_CONFIG["user"],
            password=DB_CONFIG["password"],
            dbname=DB_CONFIG["database"]
        )
    except psycopg2.OperationalError as e:
        raise TransientIOError(f"PostgreSQL unavailable: {e}") from e


class PostgresRowSource:
    """
    RowSource over the operational database.

    Rows stream through a server-side cursor, so read() is lazy. Calling
    read() again opens a new connection and restarts the extract.
    """

    def __init__(self, conn_string: Optional[str] = None, schema: str = SOURCE_SCHEMA,
                 table_map: Optional[Dict[str, str]] = None):
        self.conn_string = conn_string
        self.schema = schema
        self.table_map = table_map or SOURCE_TABLES

    def read(self, table_name: str) -> Iterator[Dict[str, Any]]:
        source_table = self.table_map.get(table_name.upper(), table_name)
        query = sql.SQL("SELECT * FROM {}.{}").format(
            sql.Identifier(self.schema), sql.Identifier(source_table)
        )

        conn = get_db_connection(self.conn_string)
        try:
            with conn.cursor(name=f"extract_{source_table}") as cur:
                cur.itersize = FETCH_SIZE
                cur.execute(query)
                columns = None
                count = 0
                for record in cur:
                    if columns is None:
                        columns = [d[0] for d in cur.description]
                    count += 1
                    yield dict(zip(columns, record))
            logger.info(f"Extracted {count} rows from {self.schema}.{source_table}")
        except psycopg2.OperationalError as e:
            raise TransientIOError(f"Extract failed: {e}", table=table_name) from e
        finally:
            conn.close()
