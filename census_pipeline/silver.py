import os
import sqlite3
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
import pandas as pd

from census_pipeline.bronze import RAW_COLUMNS, read_raw_records
from census_pipeline.config import COMPOSITE_KEY, DUPLICATE_POLICIES
from census_pipeline.exceptions import DuplicateKeyError, PipelineError
from census_pipeline.logger import get_logger
from census_pipeline.store import replace_tables, table_exists

logger = get_logger("SilverLayer")

NUMERIC_COLUMNS = ['area_km2', 'population_density', 'total_nominal_income', 'occupied_population']
# Without these the metric or the composite key cannot be formed
REQUIRED_COLUMNS = ['source_file', 'sex', 'race_or_color', 'total_nominal_income']

BRAZILIAN_GROUPED = r"-?\d{1,3}(?:\.\d{3})*(?:,\d+)?"
BRAZILIAN_DECIMAL = r"-?\d+,\d+"

SILVER_COLUMNS = [
    'geography_id', 'geography_name', 'sex', 'race_or_color',
    'area_km2', 'population_density', 'total_nominal_income',
    'occupied_population', 'average_monthly_income'
]

SILVER_DDL = """
    CREATE TABLE silver_census (
        geography_id INTEGER NOT NULL,
        geography_name TEXT NOT NULL,
        sex TEXT NOT NULL,
        race_or_color TEXT NOT NULL,
        area_km2 REAL,
        population_density REAL,
        total_nominal_income REAL NOT NULL,
        occupied_population INTEGER,
        average_monthly_income REAL,
        PRIMARY KEY (geography_id, sex, race_or_color)
    )
"""

QUARANTINE_DDL = """
    CREATE TABLE silver_quarantine (
        row_id INTEGER PRIMARY KEY,
        source_file TEXT,
        area_km2 TEXT,
        population_density TEXT,
        total_nominal_income TEXT,
        occupied_population TEXT,
        sex TEXT,
        race_or_color TEXT,
        rejection_reason TEXT NOT NULL
    )
"""


@dataclass
class CleaningResult:
    """Output of one cleaning pass over the bronze snapshot."""

    cleaned: pd.DataFrame
    quarantined: pd.DataFrame
    duplicates_dropped: int = 0

    @property
    def raw_count(self) -> int:
        return len(self.cleaned) + len(self.quarantined) + self.duplicates_dropped


def parse_numeric(raw: pd.Series) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    Parse untyped text into floats.

    Accepts "1234.5" as well as Brazilian numbers: "1.234,5", "12,5" and
    "1.234.567" (dot for thousands, comma for decimals). Text with a comma or
    several dots that does not follow that grouping, such as "1,234.5", is
    flagged as unparsable rather than guessed at.

    Args:
        raw: Series of raw text values

    Returns:
        Tuple of (parsed values, mask of unparsable values, mask of empty values)
    """
    text = raw.fillna('').astype(str).str.strip()
    missing = text == ''
    separated = text.str.contains(',', regex=False) | (text.str.count(r'\.') > 1)
    brazilian_shape = (text.str.fullmatch(BRAZILIAN_GROUPED) | text.str.fullmatch(BRAZILIAN_DECIMAL)).fillna(False)
    malformed = separated & ~brazilian_shape

    brazilian = text.str.replace('.', '', regex=False).str.replace(',', '.', regex=False)
    normalized = text.where(~(separated & brazilian_shape), brazilian)
    values = pd.to_numeric(normalized.where(~missing & ~malformed), errors='coerce').astype(float)
    invalid = ~missing & (malformed | values.isna() | np.isinf(values))
    return values.where(~invalid), invalid, missing


def safe_divide(numerator: pd.Series, denominator: pd.Series) -> pd.Series:
    """Element-wise division yielding NaN wherever the denominator is zero or null."""
    numerator = numerator.astype(float)
    denominator = denominator.astype(float)
    defined = numerator.notna() & denominator.notna() & (denominator != 0)
    result = pd.Series(np.nan, index=numerator.index, dtype=float)
    result[defined] = numerator[defined] / denominator[defined]
    return result


def _rejection_reasons(raw_df: pd.DataFrame, typed: pd.DataFrame, text: pd.DataFrame) -> pd.Series:
    problems: List[Tuple[pd.Series, str]] = []

    for column in ['source_file', 'sex', 'race_or_color']:
        problems.append((text[column] == '', f"missing {column}"))

    for column in NUMERIC_COLUMNS:
        values, invalid, missing = parse_numeric(raw_df[column])
        typed[column] = values
        problems.append((invalid, f"invalid {column}: not a number"))
        problems.append((values < 0, f"invalid {column}: negative"))
        if column in REQUIRED_COLUMNS:
            problems.append((missing, f"missing {column}"))

    population = typed['occupied_population']
    problems.append((population.notna() & (population % 1 != 0), "invalid occupied_population: not an integer"))

    reasons = [[] for _ in range(len(raw_df))]
    for mask, message in problems:
        for position in np.flatnonzero(mask.to_numpy()):
            reasons[position].append(message)
    return pd.Series(['; '.join(r) for r in reasons], index=raw_df.index)


def _assign_geography_ids(names: pd.Series) -> pd.Series:
    # Dense rank over sorted names: same input set, same ids
    ids = {name: i for i, name in enumerate(sorted(names.unique()), start=1)}
    return names.map(ids).astype('int64')


def clean_records(raw_df: pd.DataFrame, duplicate_policy: str = "fail") -> CleaningResult:
    """
    Type, validate and enrich a bronze snapshot.

    Rows with unparsable or negative numbers, or without the fields needed for
    the composite key and the income metric, are quarantined with a reason.
    average_monthly_income is NULL whenever occupied_population is zero or NULL.

    Args:
        raw_df: Bronze records (all text), in ingestion order
        duplicate_policy: "fail" to raise on a repeated composite key,
            "keep_first" to keep the earliest ingested row

    Returns:
        CleaningResult with the silver rows sorted by the composite key
    """
    if duplicate_policy not in DUPLICATE_POLICIES:
        raise ValueError(f"Unknown duplicate policy: {duplicate_policy!r}")

    raw_df = raw_df.reset_index(drop=True)
    if 'row_id' not in raw_df.columns:
        raw_df.insert(0, 'row_id', range(1, len(raw_df) + 1))

    text = pd.DataFrame({
        column: raw_df[column].fillna('').astype(str).str.strip()
        for column in ['source_file', 'sex', 'race_or_color']
    })
    typed = text.copy()
    reasons = _rejection_reasons(raw_df, typed, text)
    rejected = reasons != ''

    quarantined = raw_df.loc[rejected, ['row_id', 'source_file'] + RAW_COLUMNS].copy()
    quarantined['rejection_reason'] = reasons[rejected]
    if len(quarantined):
        logger.warning(f"Quarantined {len(quarantined)} of {len(raw_df)} bronze records.")

    cleaned = typed.loc[~rejected].copy()
    cleaned['row_id'] = raw_df.loc[~rejected, 'row_id']
    cleaned['geography_name'] = cleaned['source_file'].map(lambda f: os.path.splitext(f)[0])
    cleaned['geography_id'] = _assign_geography_ids(cleaned['geography_name'])
    cleaned['average_monthly_income'] = safe_divide(
        cleaned['total_nominal_income'], cleaned['occupied_population']
    )

    key = list(COMPOSITE_KEY)
    duplicated = cleaned.duplicated(subset=key, keep=False)
    duplicates_dropped = 0
    if duplicated.any():
        offending = sorted({
            (int(g), s, r) for g, s, r in cleaned.loc[duplicated, key].itertuples(index=False, name=None)
        })
        if duplicate_policy == "fail":
            logger.error(f"Found {len(offending)} duplicated composite keys in bronze layer.")
            raise DuplicateKeyError(offending)
        before = len(cleaned)
        cleaned = cleaned.sort_values('row_id', kind='stable').drop_duplicates(subset=key, keep='first')
        duplicates_dropped = before - len(cleaned)
        logger.warning(f"Dropped {duplicates_dropped} duplicate rows for keys {offending}, keeping first ingested.")

    cleaned = cleaned.sort_values(key, kind='stable')[SILVER_COLUMNS].reset_index(drop=True)
    return CleaningResult(cleaned=cleaned, quarantined=quarantined.reset_index(drop=True),
                          duplicates_dropped=duplicates_dropped)


def transform_bronze_to_silver(conn: sqlite3.Connection, duplicate_policy: str = "fail") -> CleaningResult:
    """
    Rebuild the silver layer from the full bronze snapshot.

    silver_census and silver_quarantine are replaced in one transaction.
    """
    if not table_exists(conn, 'bronze_census'):
        raise PipelineError("Bronze layer not found; ingest raw data first.")

    raw_df = read_raw_records(conn)
    logger.info(f"Read {len(raw_df)} records from bronze layer for silver transformation.")

    result = clean_records(raw_df, duplicate_policy=duplicate_policy)

    replace_tables(conn, {
        'silver_census': (SILVER_DDL, result.cleaned),
        'silver_quarantine': (QUARANTINE_DDL, result.quarantined),
    })
    logger.info(
        f"Validation results: {len(result.cleaned)} cleaned records, "
        f"{len(result.quarantined)} quarantined, {result.duplicates_dropped} duplicates dropped"
    )
    return result


def read_silver(conn: sqlite3.Connection) -> pd.DataFrame:
    """Read the cleaned layer in composite key order."""
    if not table_exists(conn, 'silver_census'):
        raise PipelineError("Silver layer not found; run the cleaning stage first.")
    return pd.read_sql(
        "SELECT * FROM silver_census ORDER BY geography_id, sex, race_or_color", conn
    )
