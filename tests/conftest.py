"""Shared fixtures: in-memory warehouse, Chinook-shaped source tables, configs."""
import os
import sys
from datetime import date

import duckdb
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from chinook_dwh.config import PipelineConfig
from chinook_dwh.etl.staging import setup_staging_schema
from chinook_dwh.etl.warehouse.pipeline import _setup_schema

LOAD_DATE = date(2024, 1, 15)


def customer_row(customer_id, first, last, city, **extra):
    row = {
        'CustomerId': customer_id,
        'FirstName': first,
        'LastName': last,
        'Company': None,
        'Address': '1 Main St',
        'City': city,
        'State': None,
        'Country': 'USA',
        'PostalCode': '00000',
        'Phone': '+1 555 0100',
        'Fax': None,
        'Email': f'{first.lower()}@example.com',
        'SupportRepId': 3,
    }
    row.update(extra)
    return row


def chinook_source_tables():
    """A small Chinook extract: 3 invoices, sale amounts 1.98 / 3.96 / 3.98."""
    return {
        'ARTIST': [
            {'ArtistId': 1, 'Name': 'AC/DC'},
            {'ArtistId': 2, 'Name': 'Accept'},
        ],
        'ALBUM': [
            {'AlbumId': 1, 'Title': 'For Those About To Rock We Salute You', 'ArtistId': 1},
            {'AlbumId': 2, 'Title': 'Balls to the Wall', 'ArtistId': 2},
        ],
        'CUSTOMER': [
            customer_row(2, 'Leonie', 'Kohler', 'Stuttgart', Country='Germany'),
            customer_row(23, 'John', 'Gordon', 'Boston', State='MA'),
        ],
        'INVOICE': [
            {'InvoiceId': 1, 'CustomerId': 2, 'InvoiceDate': '2009-01-01 00:00:00',
             'BillingAddress': 'Theodor-Heuss-Strasse 34', 'BillingCity': 'Stuttgart',
             'BillingState': None, 'BillingCountry': 'Germany', 'BillingPostalCode': '70174',
             'Total': '1.98'},
            {'InvoiceId': 2, 'CustomerId': 23, 'InvoiceDate': '2009-01-02 00:00:00',
             'BillingAddress': '69 Salem Street', 'BillingCity': 'Boston',
             'BillingState': 'MA', 'BillingCountry': 'USA', 'BillingPostalCode': '2113',
             'Total': '3.96'},
            {'InvoiceId': 3, 'CustomerId': 2, 'InvoiceDate': '2009-01-03 10:30:00',
             'BillingAddress': 'Theodor-Heuss-Strasse 34', 'BillingCity': 'Stuttgart',
             'BillingState': None, 'BillingCountry': 'Germany', 'BillingPostalCode': '70174',
             'Total': '3.98'},
        ],
        'INVOICELINE': [
            {'InvoiceLineId': 1, 'InvoiceId': 1, 'TrackId': 2, 'UnitPrice': '0.99', 'Quantity': 1},
            {'InvoiceLineId': 2, 'InvoiceId': 1, 'TrackId': 4, 'UnitPrice': '0.99', 'Quantity': 1},
            {'InvoiceLineId': 3, 'InvoiceId': 2, 'TrackId': 6, 'UnitPrice': '0.99', 'Quantity': 1},
            {'InvoiceLineId': 4, 'InvoiceId': 2, 'TrackId': 8, 'UnitPrice': '0.99', 'Quantity': 1},
            {'InvoiceLineId': 5, 'InvoiceId': 2, 'TrackId': 10, 'UnitPrice': '0.99', 'Quantity': 1},
            {'InvoiceLineId': 6, 'InvoiceId': 2, 'TrackId': 12, 'UnitPrice': '0.99', 'Quantity': 1},
            {'InvoiceLineId': 7, 'InvoiceId': 3, 'TrackId': 16, 'UnitPrice': '1.99', 'Quantity': 2},
        ],
    }


@pytest.fixture
def source_tables():
    return chinook_source_tables()


@pytest.fixture
def make_customer():
    return customer_row


@pytest.fixture
def conn():
    connection = duckdb.connect(':memory:')
    yield connection
    connection.close()


@pytest.fixture
def warehouse(conn):
    """In-memory DuckDB with warehouse and staging schemas created."""
    _setup_schema(conn)
    setup_staging_schema(conn)
    return conn


@pytest.fixture
def make_config():
    """Factory for fast, deterministic pipeline configs."""
    def _make(load_date=LOAD_DATE, **overrides):
        settings = dict(
            origin_tag='test_etl',
            calendar_start_year=2009,
            calendar_span_years=1,
            clock=lambda: load_date,
            max_retries=3,
            retry_backoff_seconds=0,
            auto_repair=False,
            staging_workers=2,
        )
        settings.update(overrides)
        return PipelineConfig(**settings)
    return _make
