"""Audit stamping and column validation for staged rows"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import pandas as pd

from chinook_dwh.etl.errors import SchemaError
from .schemas import (
    CREATED_BY, CREATED_DT, DATETIME, DECIMAL, DECIMAL_PRECISION, DECIMAL_SCALE, INT,
    INT32_MAX, INT32_MIN, RUN_ID, SOURCE_ROW, STR, TableSchema, get_schema
)

logger = logging.getLogger(__name__)

CENT = Decimal(1).scaleb(-DECIMAL_SCALE)
DECIMAL_LIMIT = Decimal(10) ** (DECIMAL_PRECISION - DECIMAL_SCALE)


def normalize_column_name(name: Any) -> str:
    """ Single case convention for staged columns: stripped UPPERCASE """
    return str(name).strip().upper()


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _check_int32(value: int) -> int:
    if not INT32_MIN <= value <= INT32_MAX:
        raise ValueError(f"{value} is out of INTEGER range")
    return value


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(value, int):
        return _check_int32(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value} is not integral")
        return _check_int32(int(value))
    if isinstance(value, Decimal):
        if not value.is_finite() or value != value.to_integral_value():
            raise ValueError(f"{value} is not integral")
        return _check_int32(int(value))
    text = str(value).strip()
    if not text.lstrip('-').isdigit():
        raise ValueError(f"{value!r} is not an integer")
    return _check_int32(int(text))


def _to_decimal(value: Any) -> Decimal:
    """Money value as a Decimal that fits DECIMAL(10,2), rounded half up to cents."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"{value!r} is not a number") from None
    if not number.is_finite():
        raise ValueError(f"{value!r} is not a finite number")
    # Bound before quantize; quantize itself fails past the context precision
    if abs(number) >= DECIMAL_LIMIT or abs(number.quantize(CENT, rounding=ROUND_HALF_UP)) >= DECIMAL_LIMIT:
        raise ValueError(f"{value!r} exceeds DECIMAL({DECIMAL_PRECISION},{DECIMAL_SCALE})")
    return number.quantize(CENT, rounding=ROUND_HALF_UP)


def _to_str(value: Any) -> str:
    return str(value)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value.to_pydatetime() if isinstance(value, pd.Timestamp) else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    parsed = pd.to_datetime(str(value))
    if pd.isna(parsed):
        raise ValueError(f"{value!r} is not a timestamp")
    return parsed.to_pydatetime()


COERCERS: Dict[str, Callable[[Any], Any]] = {
    INT: _to_int,
    DECIMAL: _to_decimal,
    STR: _to_str,
    DATETIME: _to_datetime,
}


@dataclass
class StampResult:
    """Outcome of stamping one extracted table."""
    table: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    processed: int = 0
    rejected: int = 0
    errors: List[Tuple[int, str]] = field(default_factory=list)
    unexpected_columns: Set[str] = field(default_factory=set)
    # parent_key values of rejected rows, e.g. invoices missing a line
    rejected_parents: Set[int] = field(default_factory=set)

    @property
    def staged(self) -> int:
        return len(self.rows)


class AuditStamper:
    """
    Validate extracted rows against the table's expected columns and add
    provenance (CREATED_BY, CREATED_DT, RUN_ID, SOURCE_ROW).

    Rows failing validation are rejected and counted, never silently dropped.
    """

    def __init__(self, origin_tag: str, run_id: str, clock: Callable[[], date] = date.today):
        if not origin_tag:
            raise ValueError("origin_tag is required")
        self.origin_tag = origin_tag
        self.run_id = run_id
        self.clock = clock

    def stamp_row(self, schema: TableSchema, row: Mapping[str, Any], source_row: int,
                  created_dt: date, unexpected: Optional[Set[str]] = None) -> Dict[str, Any]:
        """Normalize, validate and stamp one row. Raises SchemaError."""
        normalized: Dict[str, Any] = {}
        for key, value in row.items():
            name = normalize_column_name(key)
            if name in normalized:
                raise SchemaError(f"column {key!r} collides with {name} after case normalization",
                                  table=schema.name)
            normalized[name] = value

        expected = set(schema.column_names)
        if unexpected is not None:
            unexpected.update(set(normalized) - expected)

        staged: Dict[str, Any] = {}
        for column in schema.columns:
            value = normalized.get(column.name)
            if _is_null(value):
                if column.required:
                    state = 'missing' if column.name not in normalized else 'null'
                    raise SchemaError(f"required column {column.name} is {state}", table=schema.name)
                staged[column.name] = None
                continue
            try:
                staged[column.name] = COERCERS[column.kind](value)
            except (ValueError, TypeError, OverflowError) as e:
                raise SchemaError(f"column {column.name} expects {column.kind}: {e}",
                                  table=schema.name) from e

        staged[CREATED_BY] = self.origin_tag
        staged[CREATED_DT] = created_dt
        staged[RUN_ID] = self.run_id
        staged[SOURCE_ROW] = source_row
        return staged

    def stamp(self, table: str, rows: Iterable[Mapping[str, Any]]) -> StampResult:
        schema = get_schema(table)
        result = StampResult(table=schema.name)
        created_dt = self.clock()

        for source_row, row in enumerate(rows):
            result.processed += 1
            try:
                result.rows.append(
                    self.stamp_row(schema, row, source_row, created_dt, result.unexpected_columns)
                )
            except SchemaError as e:
                result.rejected += 1
                result.errors.append((source_row, str(e)))
                logger.warning(f"Rejected {schema.name} row {source_row}: {e}")
                if schema.parent_key:
                    self._record_parent(schema, row, source_row, result)

        if result.unexpected_columns:
            logger.warning(f"{schema.name}: dropped unexpected columns {sorted(result.unexpected_columns)}")

        logger.info(f"Stamped {schema.name}: processed={result.processed}, "
                    f"staged={result.staged}, rejected={result.rejected}")
        return result

    @staticmethod
    def _record_parent(schema: TableSchema, row: Mapping[str, Any], source_row: int,
                       result: StampResult) -> None:
        """Remember which parent a rejected row belonged to, when its key is readable."""
        for key, value in row.items():
            if normalize_column_name(key) == schema.parent_key:
                try:
                    result.rejected_parents.add(_to_int(value))
                    return
                except (ValueError, TypeError, OverflowError):
                    break
        logger.warning(f"{schema.name} row {source_row}: rejected without a readable {schema.parent_key}")
