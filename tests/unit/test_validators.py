"""Unit tests for warehouse validators and the quality gate."""
import pytest
import sys
import os
from datetime import date, datetime

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from chinook_dwh.etl.warehouse.pipeline import run_pipeline
from chinook_dwh.quality import (
    InvariantResult,
    QualityGate,
    ValidationConfig,
    ValidationHardFailError,
    WarehouseValidator
)
from chinook_dwh.storage import InMemoryRowSource


class TestInvariantResult:
    """Tests for InvariantResult dataclass."""

    def test_clean_result_is_valid(self):
        result = InvariantResult(timestamp=datetime.now())
        assert result.is_valid
        assert result.violations == {}

    def test_only_nonzero_violations_reported(self):
        result = InvariantResult(
            timestamp=datetime.now(),
            customers_with_overlaps=2,
            orphan_foreign_keys={'customer_sk': 0, 'date_sk': 1}
        )
        assert result.violations == {'scd2_overlaps': 2, 'orphan_date_sk': 1}
        assert not result.is_valid


class TestQualityGate:
    """Tests for QualityGate."""

    def setup_method(self):
        self.gate = QualityGate()

    def test_success(self):
        gate = self.gate.evaluate(InvariantResult(timestamp=datetime.now(), reconciled_invoices=3))
        assert gate.status == 'success'
        assert '3 invoices' in gate.message

    def test_hard_fail_on_violation(self):
        result = InvariantResult(timestamp=datetime.now(), duplicate_fact_invoices=1)
        with pytest.raises(ValidationHardFailError) as exc:
            self.gate.evaluate(result)
        assert exc.value.violations == {'duplicate_facts': 1}


class TestWarehouseValidator:
    """Tests for WarehouseValidator against a loaded warehouse."""

    @pytest.fixture(autouse=True)
    def _setup(self, conn, source_tables, make_config):
        self.conn = conn
        self.config = make_config()
        run_pipeline(conn, InMemoryRowSource(source_tables), self.config)
        self.validator = WarehouseValidator()

    def test_loaded_warehouse_is_valid(self):
        result = self.validator.validate(self.conn, run_id=self.config.run_id)
        assert result.is_valid
        assert result.reconciled_invoices == 3
        assert result.fact_amount == pytest.approx(result.staged_amount)

    def test_reconciliation_skipped_without_run(self):
        result = self.validator.validate(self.conn)
        assert result.reconciled_invoices == 0
        assert result.is_valid

    def test_detects_amount_mismatch(self):
        self.conn.execute("UPDATE FactSales SET sale_amount = sale_amount + 1 WHERE invoice_id = 2")
        result = self.validator.validate(self.conn, run_id=self.config.run_id)
        assert result.reconciliation_mismatches == 1

    def test_tolerance_is_configurable(self):
        self.conn.execute("UPDATE FactSales SET sale_amount = sale_amount + 0.01 WHERE invoice_id = 2")
        strict = self.validator.validate(self.conn, run_id=self.config.run_id)
        loose = WarehouseValidator(ValidationConfig(reconciliation_tolerance=0.05)).validate(
            self.conn, run_id=self.config.run_id
        )
        assert strict.reconciliation_mismatches == 1
        assert loose.reconciliation_mismatches == 0

    def test_detects_orphan_foreign_key(self):
        self.conn.execute("UPDATE FactSales SET customer_sk = 9999 WHERE invoice_id = 1")
        result = self.validator.validate(self.conn)
        assert result.orphan_foreign_keys['customer_sk'] == 1
        assert not result.is_valid

    def test_detects_two_current_rows(self):
        self.conn.execute("""
            INSERT INTO DimCustomer (customer_sk, customer_id, first_name, last_name, email,
                                     effective_from, effective_to, is_current, created_by, created_dt)
            VALUES (9999, 23, 'John', 'Gordon', 'john@example.com', DATE '2024-02-01', NULL, TRUE,
                    'test_etl', DATE '2024-02-01')
        """)
        result = self.validator.validate(self.conn)
        assert result.customers_without_one_current == 1
        assert result.customers_with_overlaps == 1

    def test_same_day_supersede_is_not_an_overlap(self):
        self.conn.execute("""
            UPDATE DimCustomer SET is_current = FALSE, effective_to = effective_from - 1
            WHERE customer_id = 23
        """)
        self.conn.execute("""
            INSERT INTO DimCustomer (customer_sk, customer_id, first_name, last_name, email,
                                     effective_from, effective_to, is_current, created_by, created_dt)
            VALUES (9999, 23, 'John', 'Gordon', 'john@example.com', ?, NULL, TRUE, 'test_etl', ?)
        """, [date(2024, 1, 15), date(2024, 1, 15)])
        result = self.validator.validate(self.conn)
        assert result.customers_with_overlaps == 0
        assert result.customers_without_one_current == 0
