"""Chinook data warehouse ETL: staging, dimensions (SCD2) and incremental facts."""

__version__ = "0.1.0"
