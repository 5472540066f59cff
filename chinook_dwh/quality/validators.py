"""Data Quality Validators for the loaded warehouse."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import duckdb

from chinook_dwh.config import DQ_RECONCILIATION_TOLERANCE
from chinook_dwh.etl.staging.schemas import INVOICELINE

logger = logging.getLogger(__name__)

# Fact foreign key -> (dimension table, dimension key)
FACT_FOREIGN_KEYS = {
    'invoice_sk': ('DimInvoice', 'invoice_sk'),
    'customer_sk': ('DimCustomer', 'customer_sk'),
    'date_sk': ('DimDate', 'date_sk'),
    'time_sk': ('DimTime', 'time_sk'),
}


@dataclass
class ValidationConfig:
    """Validation thresholds."""
    reconciliation_tolerance: float = DQ_RECONCILIATION_TOLERANCE


@dataclass
class InvariantResult:
    """Post-load invariant check result."""
    timestamp: datetime
    run_id: Optional[str] = None
    customers_without_one_current: int = 0
    customers_with_overlaps: int = 0
    duplicate_fact_invoices: int = 0
    orphan_foreign_keys: Dict[str, int] = field(default_factory=dict)
    # Reconciliation (only when a run_id is given)
    reconciled_invoices: int = 0
    reconciliation_mismatches: int = 0
    fact_amount: float = 0.0
    staged_amount: float = 0.0
    details: List[str] = field(default_factory=list)

    @property
    def violations(self) -> Dict[str, int]:
        checks = {
            'scd2_current_rows': self.customers_without_one_current,
            'scd2_overlaps': self.customers_with_overlaps,
            'duplicate_facts': self.duplicate_fact_invoices,
            'reconciliation': self.reconciliation_mismatches,
        }
        checks.update({f'orphan_{k}': v for k, v in self.orphan_foreign_keys.items()})
        return {k: v for k, v in checks.items() if v > 0}

    @property
    def is_valid(self) -> bool:
        return not self.violations


class WarehouseValidator:
    """Validator for the SCD2, uniqueness, referential and reconciliation invariants."""

    def __init__(self, config: ValidationConfig = None):
        self.config = config or ValidationConfig()

    def _count_without_one_current(self, conn) -> int:
        return conn.execute("""
            SELECT COUNT(*) FROM (
                SELECT customer_id FROM DimCustomer
                GROUP BY customer_id
                HAVING COUNT(*) FILTER (WHERE is_current) <> 1
            )
        """).fetchone()[0]

    def _count_overlaps(self, conn) -> int:
        # Versions closed on the day they opened have an empty range and overlap nothing
        return conn.execute("""
            WITH versions AS (
                SELECT customer_id, customer_sk, effective_from,
                       COALESCE(effective_to, DATE '9999-12-31') AS effective_to
                FROM DimCustomer
                WHERE effective_to IS NULL OR effective_to >= effective_from
            )
            SELECT COUNT(DISTINCT a.customer_id)
            FROM versions a
            JOIN versions b
              ON a.customer_id = b.customer_id
             AND a.customer_sk < b.customer_sk
             AND a.effective_from <= b.effective_to
             AND b.effective_from <= a.effective_to
        """).fetchone()[0]

    def _count_duplicate_facts(self, conn) -> int:
        return conn.execute("""
            SELECT COUNT(*) FROM (
                SELECT invoice_id FROM FactSales GROUP BY invoice_id HAVING COUNT(*) > 1
            )
        """).fetchone()[0]

    def _count_orphans(self, conn) -> Dict[str, int]:
        orphans = {}
        for fk, (table, key) in FACT_FOREIGN_KEYS.items():
            orphans[fk] = conn.execute(f"""
                SELECT COUNT(*) FROM FactSales f
                WHERE NOT EXISTS (SELECT 1 FROM {table} d WHERE d.{key} = f.{fk})
            """).fetchone()[0]
        return orphans

    def _reconcile(self, conn, result: InvariantResult) -> None:
        """Fact amount per invoice loaded by the run vs staged SUM(QUANTITY * UNITPRICE)."""
        row = conn.execute(f"""
            WITH staged AS (
                SELECT INVOICEID, SUM(QUANTITY * UNITPRICE) AS amount
                FROM {INVOICELINE.staging_table}
                WHERE RUN_ID = ?
                GROUP BY INVOICEID
            )
            SELECT
                COUNT(*),
                COUNT(*) FILTER (WHERE s.amount IS NULL
                                 OR ABS(CAST(f.sale_amount AS DOUBLE) - CAST(s.amount AS DOUBLE)) > ?),
                COALESCE(SUM(CAST(f.sale_amount AS DOUBLE)), 0),
                COALESCE(SUM(CAST(s.amount AS DOUBLE)), 0)
            FROM FactSales f
            LEFT JOIN staged s ON s.INVOICEID = f.invoice_id
            WHERE f.run_id = ?
        """, [result.run_id, self.config.reconciliation_tolerance, result.run_id]).fetchone()

        result.reconciled_invoices = row[0]
        result.reconciliation_mismatches = row[1]
        result.fact_amount = round(row[2], 2)
        result.staged_amount = round(row[3], 2)

    def validate(self, conn: duckdb.DuckDBPyConnection, run_id: Optional[str] = None) -> InvariantResult:
        """Run all invariant checks; reconciliation only for a given run."""
        result = InvariantResult(timestamp=datetime.now(), run_id=run_id)

        result.customers_without_one_current = self._count_without_one_current(conn)
        result.customers_with_overlaps = self._count_overlaps(conn)
        result.duplicate_fact_invoices = self._count_duplicate_facts(conn)
        result.orphan_foreign_keys = self._count_orphans(conn)
        if run_id:
            self._reconcile(conn, result)

        for name, count in result.violations.items():
            result.details.append(f"{name}: {count}")

        if result.is_valid:
            logger.info(f"Warehouse validation passed (run={run_id}, reconciled={result.reconciled_invoices}, "
                        f"amount={result.fact_amount})")
        else:
            logger.error(f"Warehouse validation violations: {'; '.join(result.details)}")
        return result
