"""Monitoring module - ETL run metrics."""

from .etl_metrics import ETLMetrics, ETLMetricsLogger

__all__ = ['ETLMetrics', 'ETLMetricsLogger']
