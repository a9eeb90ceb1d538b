import pandas as pd

from census_pipeline.logger import get_logger
from census_pipeline.silver import safe_divide

logger = get_logger("Analytics")

MALE = "Men"
FEMALE = "Women"


def _income_by(cleaned: pd.DataFrame, column: str) -> pd.DataFrame:
    """
    Average monthly income per (geography, category value).

    Rows with a null income are left out; the remaining rows are combined as
    total income over total occupied population, which equals the row value
    when a group holds a single row.
    """
    rankable = cleaned[cleaned['average_monthly_income'].notna()]
    grouped = (rankable
               .groupby(['geography_id', 'geography_name', column], sort=True)
               [['total_nominal_income', 'occupied_population']]
               .sum()
               .reset_index())
    grouped['average_monthly_income'] = safe_divide(
        grouped['total_nominal_income'], grouped['occupied_population']
    )
    return grouped


def rank_by_category(cleaned: pd.DataFrame, category: str, n: int, column: str = "sex") -> pd.DataFrame:
    """
    Top-n geographies by average monthly income for one category value.

    Args:
        cleaned: Silver layer records
        category: Category value to filter on, e.g. "Men"
        n: Number of geographies to return
        column: Category column, "sex" or "race_or_color"

    Returns:
        DataFrame of geography_id, geography_name, average_monthly_income,
        highest income first, ties by geography_id ascending
    """
    if n < 0:
        raise ValueError(f"n must be non-negative, got {n}")
    if column not in ('sex', 'race_or_color'):
        raise ValueError(f"Unknown category column: {column!r}")

    incomes = _income_by(cleaned[cleaned[column] == category], column)
    ranked = (incomes
              .sort_values(['average_monthly_income', 'geography_id'], ascending=[False, True])
              .head(n)
              [['geography_id', 'geography_name', 'average_monthly_income']]
              .reset_index(drop=True))
    logger.info(f"Ranked {len(ranked)} geographies for {column}={category!r}")
    return ranked


def calculate_gender_gap(cleaned: pd.DataFrame, male: str = MALE, female: str = FEMALE) -> pd.DataFrame:
    """
    Male/female income gap per geography.

    Geographies reporting only one of the two sexes are left out. ratio is
    NULL when the female income is zero.

    Returns:
        DataFrame of geography_id, geography_name, male_income, female_income,
        gap, ratio ordered by gap descending
    """
    incomes = _income_by(cleaned[cleaned['sex'].isin([male, female])], 'sex')

    rows = []
    for (geography_id, geography_name), group in incomes.groupby(['geography_id', 'geography_name'], sort=True):
        by_sex = dict(zip(group['sex'], group['average_monthly_income']))
        if male not in by_sex or female not in by_sex:
            continue
        rows.append({
            'geography_id': geography_id,
            'geography_name': geography_name,
            'male_income': by_sex[male],
            'female_income': by_sex[female],
        })

    gap = pd.DataFrame(rows, columns=['geography_id', 'geography_name', 'male_income', 'female_income'])
    gap['gap'] = gap['male_income'] - gap['female_income']
    gap['ratio'] = safe_divide(gap['male_income'], gap['female_income'])
    gap = gap.sort_values(['gap', 'geography_id'], ascending=[False, True]).reset_index(drop=True)
    logger.info(f"Computed gender gap for {len(gap)} geographies")
    return gap
