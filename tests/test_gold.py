"""Tests for the dimensional modeling stage."""

import pandas as pd
import pytest

from census_pipeline.audit import check_referential_integrity
from census_pipeline.bronze import load_raw_records
from census_pipeline.exceptions import ReferentialIntegrityError
from census_pipeline.gold import (
    aggregate_fact,
    build_category_dimension,
    build_dimensional_model,
    build_fact_table,
    build_geography_dimension,
    build_gold_layer,
)
from census_pipeline.silver import clean_records, transform_bronze_to_silver
from census_pipeline.store import read_table


@pytest.fixture
def cleaned(raw_df):
    return clean_records(raw_df).cleaned


class TestDimensions:
    def test_category_dimension_has_sorted_distinct_pairs(self, cleaned):
        dim = build_category_dimension(cleaned)
        assert list(dim.itertuples(index=False, name=None)) == [
            (1, 'Men', 'White'),
            (2, 'Women', 'Black'),
            (3, 'Women', 'White'),
        ]

    def test_geography_dimension(self, cleaned):
        dim = build_geography_dimension(cleaned)
        assert dim['geography_id'].tolist() == [1, 2, 3]
        assert dim['geography_name'].tolist() == ['geo_a', 'geo_b', 'geo_c']
        assert dim.loc[1, 'area_km2'] == 250.5

    def test_keys_stable_for_unchanged_input(self, cleaned):
        first = build_dimensional_model(cleaned)
        second = build_dimensional_model(cleaned.sample(frac=1, random_state=7))
        pd.testing.assert_frame_equal(first.dim_category, second.dim_category)
        pd.testing.assert_frame_equal(first.fact, second.fact)


class TestFactTable:
    def test_one_fact_per_cleaned_record_with_no_orphans(self, cleaned):
        gold = build_dimensional_model(cleaned)
        assert len(gold.fact) == len(cleaned)
        assert gold.fact['category_id'].notna().all()
        assert check_referential_integrity(gold.fact, gold.dim_category, gold.dim_geography) == 0

    def test_unresolved_category_fails(self, cleaned):
        dim_category = build_category_dimension(cleaned[cleaned['sex'] == 'Men'])
        dim_geography = build_geography_dimension(cleaned)
        with pytest.raises(ReferentialIntegrityError) as excinfo:
            build_fact_table(cleaned, dim_category, dim_geography)
        assert excinfo.value.dimension == 'dim_category'
        assert ('Women', 'White') in excinfo.value.keys

    def test_unresolved_geography_fails(self, cleaned):
        dim_category = build_category_dimension(cleaned)
        dim_geography = build_geography_dimension(cleaned[cleaned['geography_id'] != 3])
        with pytest.raises(ReferentialIntegrityError) as excinfo:
            build_fact_table(cleaned, dim_category, dim_geography)
        assert excinfo.value.keys == [(3,)]


class TestAggregation:
    def test_geography_rollup_is_derived_from_fact(self, cleaned):
        gold = build_dimensional_model(cleaned)
        summary = gold.geography_summary.set_index('geography_id')

        # geo_a: 20000 + 10000 + 0 over 10 + 10 + 0 workers
        assert summary.loc[1, 'category_count'] == 3
        assert summary.loc[1, 'total_nominal_income'] == 30000.0
        assert summary.loc[1, 'average_monthly_income'] == 1500.0
        # geo_c has no reported population
        assert pd.isna(summary.loc[3, 'average_monthly_income'])

    def test_rollup_totals_match_fact_totals(self, cleaned):
        gold = build_dimensional_model(cleaned)
        fact_total = gold.fact['total_nominal_income'].sum()
        assert gold.geography_summary['total_nominal_income'].sum() == fact_total
        assert gold.category_summary['total_nominal_income'].sum() == fact_total

    def test_category_rollup(self, cleaned):
        fact = build_dimensional_model(cleaned).fact
        summary = aggregate_fact(fact, ['category_id'], 'geography_count').set_index('category_id')
        # Men/White: geo_a 20000/10, geo_b 3000/1, geo_c 4000/unknown
        assert summary.loc[1, 'geography_count'] == 3
        assert summary.loc[1, 'occupied_population'] == 11
        assert summary.loc[1, 'average_monthly_income'] == pytest.approx(27000 / 11)


class TestBuildGoldLayer:
    def _snapshot(self, conn):
        tables = ['silver_census', 'dim_category', 'dim_geography', 'fact_indicators',
                  'gold_geography_summary', 'gold_category_summary']
        return {t: conn.execute(f"SELECT * FROM {t}").fetchall() for t in tables}

    def test_writes_all_tables(self, conn, raw_df):
        load_raw_records(conn, raw_df)
        transform_bronze_to_silver(conn)
        build_gold_layer(conn)

        assert len(read_table(conn, 'dim_category')) == 3
        assert len(read_table(conn, 'dim_geography')) == 3
        assert len(read_table(conn, 'fact_indicators')) == 5
        orphans = conn.execute("""
            SELECT COUNT(*) FROM fact_indicators f
            LEFT JOIN dim_category c ON f.category_id = c.category_id
            LEFT JOIN dim_geography g ON f.geography_id = g.geography_id
            WHERE c.category_id IS NULL OR g.geography_id IS NULL
        """).fetchone()[0]
        assert orphans == 0

    def test_rebuild_is_idempotent(self, conn, raw_df):
        load_raw_records(conn, raw_df)
        transform_bronze_to_silver(conn)
        build_gold_layer(conn)
        first = self._snapshot(conn)

        transform_bronze_to_silver(conn)
        build_gold_layer(conn)
        assert self._snapshot(conn) == first

    def test_malformed_row_absent_downstream(self, conn, raw_df):
        load_raw_records(conn, raw_df)
        transform_bronze_to_silver(conn)
        build_gold_layer(conn)

        black_men = conn.execute("""
            SELECT COUNT(*) FROM fact_indicators f
            JOIN dim_category c ON f.category_id = c.category_id
            WHERE c.sex = 'Men' AND c.race_or_color = 'Black'
        """).fetchone()[0]
        assert black_men == 0
