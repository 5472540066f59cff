"""Unit tests for DimDate / DimTime processing."""
import pytest
import sys
import os
from datetime import date, datetime, time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from chinook_dwh.etl.warehouse.dimensions.calendar import (
    build_date_row,
    build_time_row,
    format_time_key,
    process_dim_date,
    process_dim_time
)
from chinook_dwh.storage import KeySequence


class TestBuildDateRow:
    """Tests for build_date_row function."""

    def test_saturday_is_weekend(self):
        row = build_date_row(date(2024, 1, 6))
        assert row['weekday_name'] == 'Saturday'
        assert row['day_of_week'] == 6
        assert row['is_weekend'] is True

    def test_weekday(self):
        row = build_date_row(date(2009, 1, 1))
        assert row['weekday_name'] == 'Thursday'
        assert row['is_weekend'] is False

    def test_quarter_and_month(self):
        row = build_date_row(date(2024, 8, 15))
        assert row['quarter'] == 3
        assert row['quarter_name'] == 'Q3'
        assert row['month_name'] == 'August'
        assert row['year_month'] == '2024-08'

    def test_iso_week(self):
        # Jan 1 2010 belongs to ISO week 53 of 2009
        assert build_date_row(date(2010, 1, 1))['week_of_year'] == 53


class TestBuildTimeRow:
    """Tests for build_time_row function."""

    def test_midnight(self):
        row = build_time_row(0)
        assert row['time_value'] == '00:00'
        assert row['hour_12'] == 12
        assert row['am_pm'] == 'AM'

    def test_afternoon(self):
        row = build_time_row(13 * 60 + 5)
        assert row['time_value'] == '13:05'
        assert row['hour_12'] == 1
        assert row['am_pm'] == 'PM'

    def test_last_minute(self):
        assert build_time_row(1439)['time_value'] == '23:59'


class TestFormatTimeKey:
    """Tests for format_time_key function."""

    def test_datetime(self):
        assert format_time_key(datetime(2009, 1, 3, 10, 30, 45)) == '10:30'

    def test_time(self):
        assert format_time_key(time(7, 5)) == '07:05'

    def test_string(self):
        assert format_time_key('23:59:00') == '23:59'


class TestProcessCalendar:
    """Tests for the calendar processors against DuckDB."""

    @pytest.fixture(autouse=True)
    def _warehouse(self, warehouse):
        self.conn = warehouse
        self.sequence = KeySequence(warehouse)

    def test_date_range_is_inclusive(self):
        stats = process_dim_date(self.conn, self.sequence, 2024, 1)
        assert stats == {'inserted': 366, 'unchanged': 0}
        first, last = self.conn.execute("SELECT MIN(date_value), MAX(date_value) FROM DimDate").fetchone()
        assert first == date(2024, 1, 1)
        assert last == date(2024, 12, 31)

    def test_date_rerun_inserts_nothing(self):
        process_dim_date(self.conn, self.sequence, 2009, 1)
        stats = process_dim_date(self.conn, self.sequence, 2009, 1)
        assert stats == {'inserted': 0, 'unchanged': 365}

    def test_extending_horizon_only_adds_new_dates(self):
        process_dim_date(self.conn, self.sequence, 2009, 1)
        stats = process_dim_date(self.conn, self.sequence, 2009, 2)
        assert stats['inserted'] == 365
        assert stats['unchanged'] == 365

    def test_invalid_span(self):
        with pytest.raises(ValueError):
            process_dim_date(self.conn, self.sequence, 2009, 0)

    def test_time_has_every_minute(self):
        stats = process_dim_time(self.conn, self.sequence)
        assert stats['inserted'] == 1440
        assert self.conn.execute("SELECT COUNT(DISTINCT time_value) FROM DimTime").fetchone()[0] == 1440
        assert process_dim_time(self.conn, self.sequence)['inserted'] == 0
