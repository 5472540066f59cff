"""Expected columns per staged table"""
from collections import OrderedDict
from typing import Dict, List, NamedTuple, Optional

INT = 'int'
DECIMAL = 'decimal'
STR = 'str'
DATETIME = 'datetime'

# DECIMAL(precision, scale) of staged money columns
DECIMAL_PRECISION = 10
DECIMAL_SCALE = 2

INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1

DUCKDB_TYPES = {
    INT: 'INTEGER',
    DECIMAL: f'DECIMAL({DECIMAL_PRECISION},{DECIMAL_SCALE})',
    STR: 'VARCHAR',
    DATETIME: 'TIMESTAMP',
}

# Audit columns added by the stamper
CREATED_BY = 'CREATED_BY'
CREATED_DT = 'CREATED_DT'
RUN_ID = 'RUN_ID'
SOURCE_ROW = 'SOURCE_ROW'

AUDIT_COLUMNS_DDL = OrderedDict([
    (CREATED_BY, 'VARCHAR NOT NULL'),
    (CREATED_DT, 'DATE NOT NULL'),
    (RUN_ID, 'VARCHAR NOT NULL'),
    (SOURCE_ROW, 'INTEGER NOT NULL'),
])


class Column(NamedTuple):
    name: str
    kind: str
    required: bool = False


class TableSchema(NamedTuple):
    name: str
    natural_key: str
    columns: List[Column]
    # Rejecting a row leaves this parent incomplete for the run
    parent_key: Optional[str] = None

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def required(self) -> List[str]:
        return [c.name for c in self.columns if c.required]

    @property
    def staging_table(self) -> str:
        return f"staging.{self.name.lower()}"


ARTIST = TableSchema('ARTIST', 'ARTISTID', [
    Column('ARTISTID', INT, True),
    Column('NAME', STR),
])

ALBUM = TableSchema('ALBUM', 'ALBUMID', [
    Column('ALBUMID', INT, True),
    Column('TITLE', STR, True),
    Column('ARTISTID', INT, True),
])

CUSTOMER = TableSchema('CUSTOMER', 'CUSTOMERID', [
    Column('CUSTOMERID', INT, True),
    Column('FIRSTNAME', STR, True),
    Column('LASTNAME', STR, True),
    Column('COMPANY', STR),
    Column('ADDRESS', STR),
    Column('CITY', STR),
    Column('STATE', STR),
    Column('COUNTRY', STR),
    Column('POSTALCODE', STR),
    Column('PHONE', STR),
    Column('FAX', STR),
    Column('EMAIL', STR, True),
    Column('SUPPORTREPID', INT),
    Column('LASTUPDATE', DATETIME),
])

INVOICE = TableSchema('INVOICE', 'INVOICEID', [
    Column('INVOICEID', INT, True),
    Column('CUSTOMERID', INT, True),
    Column('INVOICEDATE', DATETIME, True),
    Column('BILLINGADDRESS', STR),
    Column('BILLINGCITY', STR),
    Column('BILLINGSTATE', STR),
    Column('BILLINGCOUNTRY', STR),
    Column('BILLINGPOSTALCODE', STR),
    Column('TOTAL', DECIMAL),
])

INVOICELINE = TableSchema('INVOICELINE', 'INVOICELINEID', [
    Column('INVOICELINEID', INT, True),
    Column('INVOICEID', INT, True),
    Column('TRACKID', INT, True),
    Column('UNITPRICE', DECIMAL, True),
    Column('QUANTITY', INT, True),
], parent_key='INVOICEID')

TABLE_SCHEMAS: Dict[str, TableSchema] = OrderedDict(
    (t.name, t) for t in (ARTIST, ALBUM, CUSTOMER, INVOICE, INVOICELINE)
)

STAGED_TABLES = tuple(TABLE_SCHEMAS)


def get_schema(table: str) -> TableSchema:
    try:
        return TABLE_SCHEMAS[table.upper()]
    except KeyError:
        raise KeyError(f"No expected-column set for table {table!r}") from None


def staging_ddl(schema: TableSchema) -> str:
    """CREATE TABLE statement for a staged table."""
    cols = [f"{c.name} {DUCKDB_TYPES[c.kind]}" for c in schema.columns]
    cols += [f"{name} {ddl}" for name, ddl in AUDIT_COLUMNS_DDL.items()]
    return f"CREATE TABLE IF NOT EXISTS {schema.staging_table} ({', '.join(cols)})"
