"""
Census Medallion ETL Package

Modules:
    bronze.py       - Ingests raw census CSV files into the bronze layer as text.
    silver.py       - Types, validates and deduplicates records; derives average monthly income.
    gold.py         - Builds the category/geography dimensions, indicator facts and rollups.
    audit.py        - Read-only null-density, uniqueness and referential checks.
    analytics.py    - Income ranking by category and gender income gap.
    export.py       - Parquet export and S3 upload of every layer.
    run_pipeline.py - Orchestrates the full pipeline from the command line.

Version: 1.0.0
"""

__version__ = "1.0.0"
