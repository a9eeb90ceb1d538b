"""
Census Data Generator

Generates synthetic raw census files, one CSV per geography, in the layout the
bronze layer ingests. Numbers are written as text in Brazilian format
("1.234,56") to exercise the silver parser. Optionally injects geographies
with no occupied population and malformed income values.
"""

import argparse
import os
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

DEFAULT_OUTPUT_DIR = "data/sample"
DEFAULT_NUM_GEOGRAPHIES = 20

SEXES = ["Men", "Women"]
RACES_OR_COLORS = ["White", "Black", "Yellow", "Brown", "Indigenous"]

# Relative income level per group
SEX_FACTOR = {"Men": 1.0, "Women": 0.78}
RACE_FACTOR = {"White": 1.0, "Black": 0.6, "Yellow": 1.1, "Brown": 0.62, "Indigenous": 0.5}


def format_brazilian(value: float, decimals: int = 2) -> str:
    """Format a number as "1.234,56"."""
    text = f"{value:,.{decimals}f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def generate_geography_records(
    rng: np.random.Generator,
    zero_population: bool = False,
    malformed: bool = False
) -> List[Dict[str, str]]:
    """
    Generate the raw records of one geography.

    Args:
        rng: Random generator
        zero_population: Give one group an occupied population of zero
        malformed: Corrupt the income of one group

    Returns:
        List of raw records with every value as text
    """
    area = rng.uniform(50, 5000)
    density = rng.uniform(2, 3000)
    base_income = rng.uniform(1500, 4500)

    records = []
    for sex in SEXES:
        for race in RACES_OR_COLORS:
            population = int(rng.integers(0, 5000))
            income = base_income * SEX_FACTOR[sex] * RACE_FACTOR[race] * population
            records.append({
                "area_km2": format_brazilian(area),
                "population_density": format_brazilian(density),
                "total_nominal_income": format_brazilian(income),
                "occupied_population": str(population),
                "sex": sex,
                "race_or_color": race,
            })

    if zero_population:
        records[-1]["occupied_population"] = "0"
        records[-1]["total_nominal_income"] = "0"
    if malformed:
        records[0]["total_nominal_income"] = "X"
    return records


def generate_census_files(
    output_dir: str,
    num_geographies: int = DEFAULT_NUM_GEOGRAPHIES,
    seed: Optional[int] = None
) -> List[str]:
    """
    Write one CSV file per geography.

    Every fifth geography gets a zero-population group and every seventh a
    malformed income value.

    Returns:
        Paths of the written files
    """
    rng = np.random.default_rng(seed)
    os.makedirs(output_dir, exist_ok=True)
    paths = []
    for i in range(1, num_geographies + 1):
        records = generate_geography_records(rng, zero_population=i % 5 == 0, malformed=i % 7 == 0)
        path = os.path.join(output_dir, f"geography_{i:03d}.csv")
        pd.DataFrame(records).to_csv(path, index=False)
        paths.append(path)
    return paths


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate synthetic raw census files")
    parser.add_argument("--output-dir", default=DEFAULT_OUTPUT_DIR)
    parser.add_argument("--geographies", type=int, default=DEFAULT_NUM_GEOGRAPHIES)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    files = generate_census_files(args.output_dir, args.geographies, args.seed)
    print(f"Generated {len(files)} CSV files in: {args.output_dir}")
