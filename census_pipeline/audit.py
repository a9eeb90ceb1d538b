"""
Read-only quality checks over the silver and gold layers.

Severity levels:
- CRITICAL: a structural invariant is broken (duplicate keys, orphan facts)
- WARNING: a tracked ratio is above its configured threshold

Null incomes are expected for geographies with no occupied population, so
null density only ever produces warnings.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import pandas as pd

from census_pipeline.config import AuditConfig
from census_pipeline.logger import get_logger

logger = get_logger("Audit")


@dataclass
class CheckResult:
    """Result of a single audit check."""

    check_name: str
    severity: str
    passed: bool
    violations: int
    message: str


@dataclass
class AuditReport:
    row_count: int
    null_counts: Dict[str, int]
    null_ratios: Dict[str, float]
    duplicate_keys: int
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks if c.severity == "CRITICAL")

    @property
    def warnings(self) -> List[CheckResult]:
        return [c for c in self.checks if c.severity == "WARNING" and not c.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'row_count': self.row_count,
            'null_counts': self.null_counts,
            'null_ratios': self.null_ratios,
            'duplicate_keys': self.duplicate_keys,
            'passed': self.passed,
            'checks': [vars(c) for c in self.checks],
        }


def check_null_counts(df: pd.DataFrame, columns: Sequence[str]) -> Dict[str, int]:
    """
    Count null values per column.

    Args:
        df: Layer to inspect
        columns: Column names to count

    Returns:
        Dictionary of column name to number of nulls
    """
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise KeyError(f"Columns not found: {missing}")
    return {column: int(df[column].isna().sum()) for column in columns}


def check_uniqueness(df: pd.DataFrame, key: Sequence[str]) -> int:
    """Number of distinct key values that appear more than once."""
    counts = df.groupby(list(key), dropna=False).size()
    return int((counts > 1).sum())


def check_referential_integrity(
    fact: pd.DataFrame,
    dim_category: pd.DataFrame,
    dim_geography: pd.DataFrame
) -> int:
    """Number of fact rows whose category or geography key does not resolve."""
    orphan = (~fact['category_id'].isin(dim_category['category_id'])
              | ~fact['geography_id'].isin(dim_geography['geography_id']))
    return int(orphan.sum())


def run_audit(df: pd.DataFrame, config: AuditConfig, gold=None) -> AuditReport:
    """
    Audit the cleaned layer against the configured thresholds.

    Args:
        df: Silver layer records
        config: Critical columns, key and acceptable null ratio
        gold: Optional GoldLayer whose facts are checked for orphan keys

    Returns:
        AuditReport; `passed` is False only on duplicate keys or orphan facts
    """
    row_count = len(df)
    null_counts = check_null_counts(df, config.critical_columns)
    null_ratios = {c: (n / row_count if row_count else 0.0) for c, n in null_counts.items()}
    duplicate_keys = check_uniqueness(df, config.key)

    checks = []
    for column, ratio in null_ratios.items():
        within = ratio <= config.max_null_ratio
        checks.append(CheckResult(
            check_name=f"null_ratio_{column}",
            severity="WARNING",
            passed=within,
            violations=null_counts[column],
            message=f"{column} null ratio {ratio:.2%} (max {config.max_null_ratio:.2%})",
        ))
        if not within:
            logger.warning(f"{column} null ratio {ratio:.2%} exceeds {config.max_null_ratio:.2%}")

    checks.append(CheckResult(
        check_name="composite_key_unique",
        severity="CRITICAL",
        passed=duplicate_keys == 0,
        violations=duplicate_keys,
        message=f"{duplicate_keys} duplicated {tuple(config.key)} values",
    ))
    if duplicate_keys:
        logger.error(f"Uniqueness check failed: {duplicate_keys} duplicated key values in silver layer")

    if gold is not None:
        orphans = check_referential_integrity(gold.fact, gold.dim_category, gold.dim_geography)
        checks.append(CheckResult(
            check_name="fact_keys_resolve",
            severity="CRITICAL",
            passed=orphans == 0,
            violations=orphans,
            message=f"{orphans} fact rows with unresolved dimension keys",
        ))

    report = AuditReport(
        row_count=row_count,
        null_counts=null_counts,
        null_ratios=null_ratios,
        duplicate_keys=duplicate_keys,
        checks=checks,
    )
    logger.info(f"Audit completed: passed={report.passed}, warnings={len(report.warnings)}")
    return report
