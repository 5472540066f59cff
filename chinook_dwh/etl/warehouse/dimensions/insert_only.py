"""
Insert-only dimension processors (DimArtist, DimAlbum, DimInvoice).

No history tracking: a natural key seen for the first time gets a new
surrogate key, known natural keys are left untouched.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List

import duckdb
import pandas as pd

from chinook_dwh.storage import KeySequence
from chinook_dwh.etl.staging.schemas import CREATED_BY, CREATED_DT
from ..values import to_date, to_python

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DimensionSpec:
    """Staged -> dimension column mapping of an insert-only dimension."""
    table: str
    surrogate_key: str
    natural_key: str
    staged_natural_key: str
    namespace: str
    columns: Dict[str, str]  # staged column -> dimension column, natural key excluded


ARTIST_SPEC = DimensionSpec(
    table='DimArtist',
    surrogate_key='artist_sk',
    natural_key='artist_id',
    staged_natural_key='ARTISTID',
    namespace='dim_artist',
    columns={'NAME': 'name'},
)

ALBUM_SPEC = DimensionSpec(
    table='DimAlbum',
    surrogate_key='album_sk',
    natural_key='album_id',
    staged_natural_key='ALBUMID',
    namespace='dim_album',
    columns={'TITLE': 'title', 'ARTISTID': 'artist_id'},
)

INVOICE_SPEC = DimensionSpec(
    table='DimInvoice',
    surrogate_key='invoice_sk',
    natural_key='invoice_id',
    staged_natural_key='INVOICEID',
    namespace='dim_invoice',
    columns={
        'BILLINGADDRESS': 'billing_address',
        'BILLINGCITY': 'billing_city',
        'BILLINGSTATE': 'billing_state',
        'BILLINGCOUNTRY': 'billing_country',
        'BILLINGPOSTALCODE': 'billing_postal_code',
    },
)


def process_insert_only_dimension(
    conn: duckdb.DuckDBPyConnection,
    staging_df: pd.DataFrame,
    spec: DimensionSpec,
    sequence: KeySequence
) -> Dict[str, int]:
    """
    Insert dimension members whose natural key is not yet present.

    New members = incoming natural keys - existing natural keys.
    """
    stats = {'inserted': 0, 'unchanged': 0}

    if staging_df.empty:
        return stats

    members = staging_df.drop_duplicates(subset=[spec.staged_natural_key], keep='last')
    incoming = {int(k): row for k, row in zip(members[spec.staged_natural_key], members.to_dict('records'))}

    with sequence.writer(spec.namespace):
        existing = {r[0] for r in conn.execute(
            f"SELECT {spec.natural_key} FROM {spec.table}"
        ).fetchall()}

        new_keys: List[int] = sorted(set(incoming) - existing)
        stats['unchanged'] = len(incoming) - len(new_keys)

        if new_keys:
            sks = sequence.next_block(spec.namespace, len(new_keys))
            dim_columns = [spec.surrogate_key, spec.natural_key] + list(spec.columns.values()) + ['created_by', 'created_dt']
            values = []
            for sk, nk in zip(sks, new_keys):
                row = incoming[nk]
                values.append(
                    [sk, nk]
                    + [to_python(row.get(col)) for col in spec.columns]
                    + [row[CREATED_BY], to_date(row[CREATED_DT])]
                )
            conn.executemany(
                f"INSERT INTO {spec.table} ({', '.join(dim_columns)}) "
                f"VALUES ({', '.join(['?'] * len(dim_columns))})",
                values
            )
            stats['inserted'] = len(new_keys)

    logger.info(f"{spec.table}: inserted={stats['inserted']}, unchanged={stats['unchanged']}")
    return stats


def process_dim_artist(conn: duckdb.DuckDBPyConnection, staging_df: pd.DataFrame,
                       sequence: KeySequence) -> Dict[str, int]:
    return process_insert_only_dimension(conn, staging_df, ARTIST_SPEC, sequence)


def process_dim_album(conn: duckdb.DuckDBPyConnection, staging_df: pd.DataFrame,
                      sequence: KeySequence) -> Dict[str, int]:
    return process_insert_only_dimension(conn, staging_df, ALBUM_SPEC, sequence)


def process_dim_invoice(conn: duckdb.DuckDBPyConnection, staging_df: pd.DataFrame,
                        sequence: KeySequence) -> Dict[str, int]:
    return process_insert_only_dimension(conn, staging_df, INVOICE_SPEC, sequence)
