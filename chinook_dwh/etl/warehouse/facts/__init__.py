"""
Fact processing modules for DWH ETL.
"""

from .sales import process_fact_sales, aggregate_invoice_lines, find_new_invoice_ids, resolve_fact_keys

__all__ = [
    'process_fact_sales',
    'aggregate_invoice_lines',
    'find_new_invoice_ids',
    'resolve_fact_keys',
]
