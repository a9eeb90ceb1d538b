"""Shared fixtures for the census pipeline tests."""

import pandas as pd
import pytest

from census_pipeline.bronze import RAW_COLUMNS
from census_pipeline.store import connect


def raw_row(geography, sex, race, income, population, area="100", density="10"):
    """One bronze record with every value as text."""
    return {
        'source_file': f"{geography}.csv",
        'area_km2': area,
        'population_density': density,
        'total_nominal_income': income,
        'occupied_population': population,
        'sex': sex,
        'race_or_color': race,
    }


def make_raw(rows):
    return pd.DataFrame(rows, columns=['source_file'] + RAW_COLUMNS)


@pytest.fixture
def raw_df():
    """Small bronze snapshot with a zero-population group and a malformed income."""
    return make_raw([
        raw_row("geo_a", "Men", "White", "20.000,00", "10"),
        raw_row("geo_a", "Women", "White", "10000", "10"),
        raw_row("geo_a", "Women", "Black", "0", "0"),
        raw_row("geo_b", "Men", "White", "3000", "1", area="250,5", density="1.234,5"),
        raw_row("geo_b", "Men", "Black", "abc", "4"),
        raw_row("geo_c", "Men", "White", "4000", ""),
    ])


@pytest.fixture
def conn(tmp_path):
    connection = connect(str(tmp_path / "db" / "census.db"))
    yield connection
    connection.close()
