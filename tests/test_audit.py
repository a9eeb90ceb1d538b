"""Tests for the quality audit checks."""

import pandas as pd
import pytest

from census_pipeline.audit import check_null_counts, check_uniqueness, run_audit
from census_pipeline.config import AuditConfig, COMPOSITE_KEY
from census_pipeline.gold import build_dimensional_model
from census_pipeline.silver import clean_records


@pytest.fixture
def cleaned(raw_df):
    return clean_records(raw_df).cleaned


class TestCheckNullCounts:
    def test_counts_nulls_per_column(self, cleaned):
        counts = check_null_counts(cleaned, ['average_monthly_income', 'occupied_population', 'sex'])
        assert counts == {'average_monthly_income': 2, 'occupied_population': 1, 'sex': 0}

    def test_unknown_column(self, cleaned):
        with pytest.raises(KeyError):
            check_null_counts(cleaned, ['median_income'])


class TestCheckUniqueness:
    def test_clean_set_has_no_duplicates(self, cleaned):
        assert check_uniqueness(cleaned, COMPOSITE_KEY) == 0

    def test_injected_duplicate_is_counted(self, cleaned):
        injected = pd.concat([cleaned, cleaned.iloc[[0, 0, 3]]], ignore_index=True)
        assert check_uniqueness(injected, COMPOSITE_KEY) == 2


class TestRunAudit:
    def test_nulls_within_threshold_pass(self, cleaned):
        report = run_audit(cleaned, AuditConfig(max_null_ratio=0.5))
        assert report.passed
        assert report.warnings == []
        assert report.null_ratios['average_monthly_income'] == pytest.approx(0.4)

    def test_nulls_over_threshold_only_warn(self, cleaned):
        report = run_audit(cleaned, AuditConfig(max_null_ratio=0.1))
        assert report.passed
        assert {w.check_name for w in report.warnings} == {
            'null_ratio_average_monthly_income', 'null_ratio_occupied_population'
        }

    def test_duplicates_fail_the_audit(self, cleaned):
        injected = pd.concat([cleaned, cleaned.iloc[[0]]], ignore_index=True)
        report = run_audit(injected, AuditConfig())
        assert not report.passed
        assert report.to_dict()['duplicate_keys'] == 1

    def test_empty_layer(self, cleaned):
        report = run_audit(cleaned.iloc[0:0], AuditConfig())
        assert report.passed
        assert report.null_ratios == {'average_monthly_income': 0.0, 'occupied_population': 0.0}

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            AuditConfig(max_null_ratio=1.5)


class TestGoldAudit:
    def test_orphan_facts_fail_the_audit(self, cleaned):
        gold = build_dimensional_model(cleaned)
        assert run_audit(cleaned, AuditConfig(), gold=gold).passed

        gold.dim_geography = gold.dim_geography[gold.dim_geography['geography_id'] != 1]
        report = run_audit(cleaned, AuditConfig(), gold=gold)
        assert not report.passed
        orphan_check = [c for c in report.checks if c.check_name == 'fact_keys_resolve'][0]
        assert orphan_check.violations == 3
