"""Storage module exports"""
from .interfaces import RowSource, RowSink, InMemoryRowSource, INSERT, UPSERT
from .duckdb_sink import DuckDBRowSink, quote_identifier
from .sequences import KeySequence, NAMESPACES, sequence_name
from .postgres import PostgresRowSource, get_db_connection, SOURCE_TABLES

__all__ = [
    'RowSource',
    'RowSink',
    'InMemoryRowSource',
    'INSERT',
    'UPSERT',
    'DuckDBRowSink',
    'quote_identifier',
    'KeySequence',
    'NAMESPACES',
    'sequence_name',
    'PostgresRowSource',
    'get_db_connection',
    'SOURCE_TABLES',
]
