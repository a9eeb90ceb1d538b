import csv
import glob
import os
import sqlite3
from typing import List

import pandas as pd

from census_pipeline.exceptions import IngestionError
from census_pipeline.logger import get_logger
from census_pipeline.store import read_table, replace_tables

logger = get_logger("BronzeLayer")

RAW_COLUMNS = [
    'area_km2', 'population_density', 'total_nominal_income',
    'occupied_population', 'sex', 'race_or_color'
]

BRONZE_DDL = """
    CREATE TABLE bronze_census (
        row_id INTEGER PRIMARY KEY,
        source_file TEXT,
        area_km2 TEXT,
        population_density TEXT,
        total_nominal_income TEXT,
        occupied_population TEXT,
        sex TEXT,
        race_or_color TEXT
    )
"""


def validate_csv_structure(csv_file: str, required_columns: list) -> bool:
    """
    Validate the structure of the CSV file.

    Args:
        csv_file: Path to the CSV file
        required_columns: List of required column names

    Returns:
        True if the CSV structure is valid, False otherwise
    """
    try:
        with open(csv_file, newline='', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            csv_columns = reader.fieldnames
            if not csv_columns:
                logger.error(f"{csv_file} is empty or has no headers.")
                return False
            missing_columns = [col for col in required_columns if col not in csv_columns]
            if missing_columns:
                logger.error(f"{csv_file} is missing required columns: {missing_columns}")
                return False
        return True
    except OSError as e:
        logger.error(f"Error validating CSV structure of {csv_file}: {e}")
        return False


def read_raw_csv(csv_file: str) -> pd.DataFrame:
    """
    Read one geography file keeping every value as untyped text.

    Args:
        csv_file: Path to the CSV file

    Returns:
        DataFrame with the raw columns plus source_file
    """
    rows = []
    with open(csv_file, newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        for row in reader:
            record = {'source_file': os.path.basename(csv_file)}
            for column in RAW_COLUMNS:
                value = row.get(column)
                record[column] = value if value is not None else ''
            rows.append(record)
    return pd.DataFrame(rows, columns=['source_file'] + RAW_COLUMNS)


def ingest_directory(conn: sqlite3.Connection, csv_dir: str) -> int:
    """
    Replace the bronze layer with every CSV file found in a directory.

    Files are read in name order so row order, and therefore row_id, is
    reproducible for an unchanged directory.

    Args:
        conn: Open connection to the pipeline database
        csv_dir: Directory holding one CSV file per geography

    Returns:
        Number of records ingested
    """
    csv_files = sorted(glob.glob(os.path.join(csv_dir, "*.csv")))
    if not csv_files:
        raise IngestionError(f"No CSV files found in {csv_dir}")

    invalid = [path for path in csv_files if not validate_csv_structure(path, RAW_COLUMNS)]
    if invalid:
        raise IngestionError(f"CSV structure validation failed for: {invalid}")

    frames: List[pd.DataFrame] = [read_raw_csv(path) for path in csv_files]
    raw_df = pd.concat(frames, ignore_index=True)
    raw_df.insert(0, 'row_id', range(1, len(raw_df) + 1))

    replace_tables(conn, {'bronze_census': (BRONZE_DDL, raw_df)})
    logger.info(f"Successfully ingested {len(raw_df)} records from {len(csv_files)} files into bronze layer.")
    return len(raw_df)


def load_raw_records(conn: sqlite3.Connection, raw_df: pd.DataFrame) -> int:
    """Replace the bronze layer with records that are already in memory."""
    raw_df = raw_df[['source_file'] + RAW_COLUMNS].reset_index(drop=True)
    raw_df.insert(0, 'row_id', range(1, len(raw_df) + 1))
    replace_tables(conn, {'bronze_census': (BRONZE_DDL, raw_df)})
    logger.info(f"Loaded {len(raw_df)} in-memory records into bronze layer.")
    return len(raw_df)


def read_raw_records(conn: sqlite3.Connection) -> pd.DataFrame:
    """Bulk read of the bronze layer in ingestion order."""
    return read_table(conn, 'bronze_census', order_by=['row_id'])
