"""
Dimension processing modules for DWH ETL.
"""

from .calendar import process_dim_date, process_dim_time, format_time_key
from .insert_only import (
    DimensionSpec,
    process_insert_only_dimension,
    process_dim_artist,
    process_dim_album,
    process_dim_invoice
)
from .customer import (
    process_dim_customer,
    plan_customer_changes,
    check_customer_history,
    repair_customer_history,
    CustomerVersionState,
    TransitionAction
)

__all__ = [
    'process_dim_date',
    'process_dim_time',
    'format_time_key',
    'DimensionSpec',
    'process_insert_only_dimension',
    'process_dim_artist',
    'process_dim_album',
    'process_dim_invoice',
    'process_dim_customer',
    'plan_customer_changes',
    'check_customer_history',
    'repair_customer_history',
    'CustomerVersionState',
    'TransitionAction',
]
