"""Value conversions between pandas frames and DuckDB parameters."""
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import numpy as np
import pandas as pd


def to_python(value: Any) -> Any:
    """NaN/NaT -> None, numpy scalars -> python scalars."""
    if value is None:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def to_date(value: Any) -> Optional[date]:
    value = to_python(value)
    if value is None:
        return None
    return pd.Timestamp(value).date()


def to_money(value: Any) -> Decimal:
    """Aggregated amount (float from pandas) -> Decimal rounded to cents."""
    return Decimal(repr(float(to_python(value)))).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
