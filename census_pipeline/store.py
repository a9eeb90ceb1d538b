"""
SQLite access shared by every layer.

Each layer replaces the tables it owns inside a single transaction: the old
tables are dropped, recreated and refilled between BEGIN and COMMIT, so a
reader sees either the previous version or the new one, never a mix.
"""

import os
import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterator, Mapping, Optional, Sequence, Tuple

import pandas as pd

from census_pipeline.logger import get_logger

logger = get_logger("Store")

# table name -> (CREATE TABLE statement, rows to insert)
TableWrite = Tuple[str, pd.DataFrame]

LAYER_TABLES = {
    'bronze': ['bronze_census'],
    'silver': ['silver_census', 'silver_quarantine'],
    'gold': [
        'dim_category', 'dim_geography', 'fact_indicators',
        'gold_geography_summary', 'gold_category_summary',
    ],
}


def connect(db_path: str) -> sqlite3.Connection:
    """
    Open a connection to the SQLite database, creating its directory.

    The connection runs in autocommit mode; multi-statement writes go through
    `transaction()` which issues explicit BEGIN/COMMIT.

    Args:
        db_path: Path to the SQLite database file (":memory:" is accepted)

    Returns:
        SQLite connection object
    """
    directory = os.path.dirname(db_path)
    if db_path != ":memory:" and directory:
        os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
    """Run the enclosed statements as one transaction, rolling back on error."""
    cursor = conn.cursor()
    cursor.execute("BEGIN IMMEDIATE")
    try:
        yield cursor
    except BaseException:
        if conn.in_transaction:
            cursor.execute("ROLLBACK")
        raise
    else:
        cursor.execute("COMMIT")
    finally:
        cursor.close()


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    row = conn.execute(
        "SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table_name,),
    ).fetchone()
    return row[0] > 0


def _rows(df: pd.DataFrame) -> Iterator[tuple]:
    # object dtype turns numpy scalars into Python ones; NaN becomes NULL
    values = df.astype(object).where(df.notna(), None)
    return values.itertuples(index=False, name=None)


def insert_rows(cursor: sqlite3.Cursor, table_name: str, df: pd.DataFrame) -> int:
    """Bulk insert a DataFrame into an existing table by column name."""
    if df.empty:
        return 0
    columns = ", ".join(df.columns)
    placeholders = ", ".join("?" for _ in df.columns)
    cursor.executemany(
        f"INSERT INTO {table_name} ({columns}) VALUES ({placeholders})",
        _rows(df),
    )
    return len(df)


def replace_tables(conn: sqlite3.Connection, tables: Mapping[str, TableWrite]) -> Dict[str, int]:
    """
    Atomically replace several tables.

    Tables referenced by foreign keys must come before the tables that
    reference them.

    Args:
        conn: Open connection from `connect()`
        tables: Mapping of table name to (CREATE TABLE statement, DataFrame)

    Returns:
        Dictionary with the number of rows written per table
    """
    written = {}
    with transaction(conn) as cursor:
        # Children are listed after their parents, so drop in reverse
        for table_name in reversed(list(tables)):
            cursor.execute(f"DROP TABLE IF EXISTS {table_name}")
        for table_name, (ddl, df) in tables.items():
            cursor.execute(ddl)
            written[table_name] = insert_rows(cursor, table_name, df)
    logger.info(f"Replaced tables {written}")
    return written


def read_table(
    conn: sqlite3.Connection,
    table_name: str,
    order_by: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Read a whole table, optionally in a fixed order."""
    query = f"SELECT * FROM {table_name}"
    if order_by:
        query += " ORDER BY " + ", ".join(order_by)
    return pd.read_sql(query, conn)


def get_layer_stats(conn: sqlite3.Connection) -> Dict[str, int]:
    """
    Get record counts for every table of every layer.

    Returns:
        Dictionary of table name to row count (-1 when the table is missing)
    """
    stats = {}
    for tables in LAYER_TABLES.values():
        for table_name in tables:
            if table_exists(conn, table_name):
                stats[table_name] = conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
            else:
                stats[table_name] = -1
    return stats
