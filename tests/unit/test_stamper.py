"""Unit tests for audit stamping and column validation."""
import pytest
import sys
import os
from datetime import date, datetime
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from chinook_dwh.etl.errors import SchemaError
from chinook_dwh.etl.staging import AuditStamper, normalize_column_name
from chinook_dwh.etl.staging.schemas import ARTIST, CUSTOMER, INVOICE, INVOICELINE


def make_stamper(run_id='run-1'):
    return AuditStamper('chinook_etl', run_id, clock=lambda: date(2024, 1, 15))


class TestNormalizeColumnName:
    """Tests for normalize_column_name function."""

    def test_upper_cases(self):
        assert normalize_column_name('ArtistId') == 'ARTISTID'

    def test_strips_whitespace(self):
        assert normalize_column_name('  name ') == 'NAME'

    def test_already_upper(self):
        assert normalize_column_name('TOTAL') == 'TOTAL'


class TestStampRow:
    """Tests for AuditStamper.stamp_row."""

    def setup_method(self):
        self.stamper = make_stamper()
        self.today = date(2024, 1, 15)

    def test_adds_audit_columns(self):
        row = self.stamper.stamp_row(ARTIST, {'ArtistId': 1, 'Name': 'AC/DC'}, 0, self.today)
        assert row['CREATED_BY'] == 'chinook_etl'
        assert row['CREATED_DT'] == self.today
        assert row['RUN_ID'] == 'run-1'
        assert row['SOURCE_ROW'] == 0

    def test_mixed_case_columns_normalized(self):
        row = self.stamper.stamp_row(ARTIST, {'artistid': 1, 'NAME': 'AC/DC'}, 0, self.today)
        assert row['ARTISTID'] == 1
        assert row['NAME'] == 'AC/DC'

    def test_missing_required_column_raises(self):
        with pytest.raises(SchemaError, match='ARTISTID is missing'):
            self.stamper.stamp_row(ARTIST, {'Name': 'AC/DC'}, 0, self.today)

    def test_null_required_column_raises(self):
        with pytest.raises(SchemaError, match='ARTISTID is null'):
            self.stamper.stamp_row(ARTIST, {'ArtistId': None, 'Name': 'AC/DC'}, 0, self.today)

    def test_missing_optional_column_filled_with_none(self):
        row = self.stamper.stamp_row(ARTIST, {'ArtistId': 1}, 0, self.today)
        assert row['NAME'] is None

    def test_case_collision_raises(self):
        with pytest.raises(SchemaError, match='collides'):
            self.stamper.stamp_row(ARTIST, {'ArtistId': 1, 'ARTISTID': 2}, 0, self.today)

    def test_wrong_type_raises(self):
        with pytest.raises(SchemaError, match='expects int'):
            self.stamper.stamp_row(ARTIST, {'ArtistId': 'abc'}, 0, self.today)

    def test_coerces_numeric_strings(self):
        row = self.stamper.stamp_row(
            INVOICELINE,
            {'InvoiceLineId': '7', 'InvoiceId': 3, 'TrackId': 16, 'UnitPrice': '1.99', 'Quantity': 2.0},
            0, self.today
        )
        assert row['INVOICELINEID'] == 7
        assert row['UNITPRICE'] == Decimal('1.99')
        assert row['QUANTITY'] == 2

    def test_rejects_fractional_integer(self):
        with pytest.raises(SchemaError):
            self.stamper.stamp_row(
                INVOICELINE,
                {'InvoiceLineId': 1, 'InvoiceId': 1, 'TrackId': 1, 'UnitPrice': 1, 'Quantity': 1.5},
                0, self.today
            )

    def test_rejects_unparseable_timestamp(self):
        with pytest.raises(SchemaError, match='expects datetime'):
            self.stamper.stamp_row(INVOICE, {'InvoiceId': 1, 'CustomerId': 2, 'InvoiceDate': 'NaT'}, 0, self.today)

    def test_parses_datetime(self):
        row = self.stamper.stamp_row(
            INVOICE, {'InvoiceId': 1, 'CustomerId': 2, 'InvoiceDate': '2009-01-03 10:30:00'}, 0, self.today
        )
        assert row['INVOICEDATE'] == datetime(2009, 1, 3, 10, 30)

    def test_drops_unexpected_columns(self):
        unexpected = set()
        row = self.stamper.stamp_row(ARTIST, {'ArtistId': 1, 'Genre': 'Rock'}, 0, self.today, unexpected)
        assert 'GENRE' not in row
        assert unexpected == {'GENRE'}


class TestNumericBounds:
    """Values the staging columns cannot hold are rejected, not landed."""

    def setup_method(self):
        self.stamper = make_stamper()
        self.today = date(2024, 1, 15)

    def line(self, **overrides):
        row = {'InvoiceLineId': 1, 'InvoiceId': 2, 'TrackId': 6, 'UnitPrice': '0.99', 'Quantity': 1}
        row.update(overrides)
        return self.stamper.stamp_row(INVOICELINE, row, 0, self.today)

    @pytest.mark.parametrize('price', ['NaN', 'Infinity', '-inf', float('inf')])
    def test_non_finite_price(self, price):
        with pytest.raises(SchemaError, match='expects decimal'):
            self.line(UnitPrice=price)

    @pytest.mark.parametrize('price', ['1e12', '100000000', '99999999.995', '-100000000', '1e400'])
    def test_price_over_precision(self, price):
        with pytest.raises(SchemaError, match=r'DECIMAL\(10,2\)'):
            self.line(UnitPrice=price)

    def test_largest_price_fits(self):
        assert self.line(UnitPrice='99999999.99')['UNITPRICE'] == Decimal('99999999.99')

    def test_price_rounded_to_cents(self):
        assert self.line(UnitPrice='0.995')['UNITPRICE'] == Decimal('1.00')
        assert self.line(UnitPrice=0.99)['UNITPRICE'] == Decimal('0.99')

    def test_price_stays_decimal(self):
        assert isinstance(self.line()['UNITPRICE'], Decimal)

    @pytest.mark.parametrize('quantity', [10 ** 12, 2 ** 31, -2 ** 31 - 1, '4294967296', 1e12])
    def test_integer_out_of_range(self, quantity):
        with pytest.raises(SchemaError, match='expects int'):
            self.line(Quantity=quantity)

    def test_integer_bounds_fit(self):
        assert self.line(Quantity=2 ** 31 - 1)['QUANTITY'] == 2 ** 31 - 1
        assert self.line(Quantity=-2 ** 31)['QUANTITY'] == -2 ** 31


class TestStamp:
    """Tests for AuditStamper.stamp over a whole table."""

    def test_counts_rejected_rows(self):
        rows = [
            {'ArtistId': 1, 'Name': 'AC/DC'},
            {'Name': 'No id'},
            {'ArtistId': 3, 'Name': 'Aerosmith'},
        ]
        result = make_stamper().stamp('artist', rows)

        assert result.table == 'ARTIST'
        assert result.processed == 3
        assert result.staged == 2
        assert result.rejected == 1
        assert result.errors[0][0] == 1

    def test_source_row_follows_input_order(self):
        rows = [{'ArtistId': i} for i in (5, 3, 9)]
        result = make_stamper().stamp('ARTIST', rows)
        assert [r['SOURCE_ROW'] for r in result.rows] == [0, 1, 2]
        assert [r['ARTISTID'] for r in result.rows] == [5, 3, 9]

    def test_email_required_for_customer(self):
        rows = [{'CustomerId': 1, 'FirstName': 'A', 'LastName': 'B'}]
        result = make_stamper().stamp('CUSTOMER', rows)
        assert result.rejected == 1
        assert 'EMAIL' in result.errors[0][1]
        assert CUSTOMER.name == result.table

    def test_empty_table(self):
        result = make_stamper().stamp('ALBUM', [])
        assert result.processed == 0
        assert result.staged == 0

    def test_unknown_table_raises(self):
        with pytest.raises(KeyError):
            make_stamper().stamp('TRACK', [])

    def test_requires_origin_tag(self):
        with pytest.raises(ValueError):
            AuditStamper('', 'run-1')

    def test_rejected_line_records_invoice(self):
        rows = [
            {'InvoiceLineId': 1, 'InvoiceId': 1, 'TrackId': 2, 'UnitPrice': '0.99', 'Quantity': 1},
            {'InvoiceLineId': 2, 'InvoiceId': '2', 'TrackId': 4, 'UnitPrice': '0.99', 'Quantity': 'abc'},
            {'InvoiceLineId': 3, 'InvoiceId': 'x', 'TrackId': 6, 'UnitPrice': '0.99', 'Quantity': 1},
        ]
        result = make_stamper().stamp('INVOICELINE', rows)

        assert result.rejected == 2
        # Line 3's invoice cannot be read, so only invoice 2 is known to be short
        assert result.rejected_parents == {2}

    def test_tables_without_parent_record_nothing(self):
        result = make_stamper().stamp('ARTIST', [{'Name': 'No id'}])
        assert result.rejected == 1
        assert result.rejected_parents == set()
