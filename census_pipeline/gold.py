import sqlite3
from dataclasses import dataclass
from typing import Dict, List, Sequence

import pandas as pd

from census_pipeline.exceptions import ReferentialIntegrityError
from census_pipeline.logger import get_logger
from census_pipeline.silver import read_silver, safe_divide
from census_pipeline.store import replace_tables

logger = get_logger("GoldLayer")

CATEGORY_DDL = """
    CREATE TABLE dim_category (
        category_id INTEGER PRIMARY KEY,
        sex TEXT NOT NULL,
        race_or_color TEXT NOT NULL,
        UNIQUE (sex, race_or_color)
    )
"""

GEOGRAPHY_DDL = """
    CREATE TABLE dim_geography (
        geography_id INTEGER PRIMARY KEY,
        geography_name TEXT NOT NULL UNIQUE,
        area_km2 REAL,
        population_density REAL
    )
"""

FACT_DDL = """
    CREATE TABLE fact_indicators (
        geography_id INTEGER NOT NULL REFERENCES dim_geography (geography_id),
        category_id INTEGER NOT NULL REFERENCES dim_category (category_id),
        total_nominal_income REAL NOT NULL,
        occupied_population INTEGER,
        average_monthly_income REAL,
        PRIMARY KEY (geography_id, category_id)
    )
"""

GEOGRAPHY_SUMMARY_DDL = """
    CREATE TABLE gold_geography_summary (
        geography_id INTEGER PRIMARY KEY REFERENCES dim_geography (geography_id),
        category_count INTEGER NOT NULL,
        total_nominal_income REAL,
        occupied_population INTEGER,
        average_monthly_income REAL
    )
"""

CATEGORY_SUMMARY_DDL = """
    CREATE TABLE gold_category_summary (
        category_id INTEGER PRIMARY KEY REFERENCES dim_category (category_id),
        geography_count INTEGER NOT NULL,
        total_nominal_income REAL,
        occupied_population INTEGER,
        average_monthly_income REAL
    )
"""

FACT_COLUMNS = [
    'geography_id', 'category_id', 'total_nominal_income',
    'occupied_population', 'average_monthly_income'
]


@dataclass
class GoldLayer:
    """Dimension, fact and rollup tables derived from one silver snapshot."""

    dim_category: pd.DataFrame
    dim_geography: pd.DataFrame
    fact: pd.DataFrame
    geography_summary: pd.DataFrame
    category_summary: pd.DataFrame


def build_category_dimension(cleaned: pd.DataFrame) -> pd.DataFrame:
    """Distinct (sex, race_or_color) pairs keyed in sorted order."""
    dim = (cleaned[['sex', 'race_or_color']]
           .drop_duplicates()
           .sort_values(['sex', 'race_or_color'])
           .reset_index(drop=True))
    dim.insert(0, 'category_id', range(1, len(dim) + 1))
    return dim


def build_geography_dimension(cleaned: pd.DataFrame) -> pd.DataFrame:
    """
    Distinct geographies with their descriptive attributes.

    geography_id is the surrogate already assigned by the silver layer. When
    rows of one geography disagree on area or density, the first row in
    composite key order wins.
    """
    ordered = cleaned.sort_values(['geography_id', 'sex', 'race_or_color'])
    dim = (ordered
           .drop_duplicates(subset=['geography_id'], keep='first')
           [['geography_id', 'geography_name', 'area_km2', 'population_density']]
           .reset_index(drop=True))
    conflicts = ordered.groupby('geography_id')[['area_km2', 'population_density']].nunique()
    conflicting = conflicts[(conflicts > 1).any(axis=1)].index.tolist()
    if conflicting:
        logger.warning(f"Geographies with inconsistent area/density, first value kept: {conflicting}")
    return dim


def _unresolved(keys: pd.DataFrame, columns: List[str]) -> List[tuple]:
    return sorted(set(keys[columns].itertuples(index=False, name=None)))


def build_fact_table(
    cleaned: pd.DataFrame,
    dim_category: pd.DataFrame,
    dim_geography: pd.DataFrame
) -> pd.DataFrame:
    """
    One indicator row per cleaned record, keyed by dimension references.

    Raises:
        ReferentialIntegrityError: if a record has no matching dimension row
    """
    fact = cleaned.merge(dim_category, on=['sex', 'race_or_color'], how='left', validate='many_to_one')
    missing_category = fact['category_id'].isna()
    if missing_category.any():
        keys = _unresolved(fact.loc[missing_category], ['sex', 'race_or_color'])
        logger.error(f"Fact construction failed: {len(keys)} unresolved category keys.")
        raise ReferentialIntegrityError('dim_category', keys)

    known_geographies = set(dim_geography['geography_id'])
    missing_geography = ~fact['geography_id'].isin(known_geographies)
    if missing_geography.any():
        keys = _unresolved(fact.loc[missing_geography], ['geography_id'])
        logger.error(f"Fact construction failed: {len(keys)} unresolved geography keys.")
        raise ReferentialIntegrityError('dim_geography', keys)

    fact['category_id'] = fact['category_id'].astype('int64')
    return (fact[FACT_COLUMNS]
            .sort_values(['geography_id', 'category_id'])
            .reset_index(drop=True))


def aggregate_fact(fact: pd.DataFrame, by: Sequence[str], count_column: str) -> pd.DataFrame:
    """
    Roll the fine-grained fact table up to a coarser grain.

    Totals are summed and the average is re-derived from the totals, so every
    grain stays consistent with the fact table.

    Args:
        fact: Fact table from build_fact_table
        by: Grouping columns (e.g. ['geography_id'])
        count_column: Name of the column holding the number of fact rows

    Returns:
        DataFrame with one row per group
    """
    by = list(by)
    rollup = (fact.groupby(by, sort=True)
              .agg(**{
                  count_column: ('total_nominal_income', 'size'),
                  'total_nominal_income': ('total_nominal_income', 'sum'),
                  'occupied_population': ('occupied_population', lambda s: s.sum(min_count=1)),
              })
              .reset_index())
    rollup['average_monthly_income'] = safe_divide(
        rollup['total_nominal_income'], rollup['occupied_population']
    )
    return rollup


def build_dimensional_model(cleaned: pd.DataFrame) -> GoldLayer:
    """Derive every gold table from a cleaned DataFrame."""
    dim_category = build_category_dimension(cleaned)
    dim_geography = build_geography_dimension(cleaned)
    fact = build_fact_table(cleaned, dim_category, dim_geography)
    return GoldLayer(
        dim_category=dim_category,
        dim_geography=dim_geography,
        fact=fact,
        geography_summary=aggregate_fact(fact, ['geography_id'], 'category_count'),
        category_summary=aggregate_fact(fact, ['category_id'], 'geography_count'),
    )


def build_gold_layer(conn: sqlite3.Connection) -> GoldLayer:
    """
    Rebuild the dimensional model from the silver layer.

    Dimensions, facts and rollups are replaced in the same transaction, so the
    fact table never references keys from a previous run.
    """
    cleaned = read_silver(conn)
    logger.info(f"Read {len(cleaned)} records from silver layer for gold modeling.")

    gold = build_dimensional_model(cleaned)

    written: Dict[str, int] = replace_tables(conn, {
        'dim_category': (CATEGORY_DDL, gold.dim_category),
        'dim_geography': (GEOGRAPHY_DDL, gold.dim_geography),
        'fact_indicators': (FACT_DDL, gold.fact),
        'gold_geography_summary': (GEOGRAPHY_SUMMARY_DDL, gold.geography_summary),
        'gold_category_summary': (CATEGORY_SUMMARY_DDL, gold.category_summary),
    })
    logger.info(f"Successfully built gold layer: {written}")
    return gold
