#!/usr/bin/env python3
"""
Census Medallion Pipeline

Runs the bronze (raw text), silver (typed, validated, income metric) and gold
(dimensional model) layers over a SQLite database, audits the silver layer
and prints the income analytics.
"""

import argparse
import datetime
import json
import logging
import sqlite3
import sys
from dataclasses import dataclass
from typing import Dict, Optional

import pandas as pd

from census_pipeline.analytics import calculate_gender_gap, rank_by_category
from census_pipeline.audit import AuditReport, run_audit
from census_pipeline.bronze import ingest_directory
from census_pipeline.config import DUPLICATE_POLICIES, PipelineConfig
from census_pipeline.exceptions import PipelineError
from census_pipeline.export import export_layers, upload_exports
from census_pipeline.gold import build_gold_layer
from census_pipeline.logger import get_logger, setup_logger
from census_pipeline.silver import read_silver, transform_bronze_to_silver
from census_pipeline.store import connect, get_layer_stats, insert_rows, transaction

logger = get_logger("Pipeline")

RUNS_DDL = """
    CREATE TABLE IF NOT EXISTS pipeline_runs (
        run_id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TEXT NOT NULL,
        finished_at TEXT NOT NULL,
        status TEXT NOT NULL,
        raw_count INTEGER,
        cleaned_count INTEGER,
        quarantined_count INTEGER,
        duplicates_dropped INTEGER,
        fact_count INTEGER,
        audit_passed INTEGER,
        error TEXT
    )
"""


@dataclass
class RunSummary:
    raw_count: int
    cleaned_count: int
    quarantined_count: int
    duplicates_dropped: int
    fact_count: int
    audit: AuditReport


def _now() -> str:
    return datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')


class CensusPipeline:
    """Medallion pipeline over census income records stored in SQLite."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def connect(self) -> sqlite3.Connection:
        return connect(self.config.db_path)

    def ingest(self, input_dir: str) -> int:
        """Replace the bronze layer with the CSV files of a directory."""
        conn = self.connect()
        try:
            return ingest_directory(conn, input_dir)
        finally:
            conn.close()

    def _record_run(self, conn: sqlite3.Connection, started_at: str, status: str,
                    summary: Optional[RunSummary] = None, error: Optional[str] = None) -> None:
        row = {'started_at': started_at, 'finished_at': _now(), 'status': status, 'error': error}
        if summary:
            row.update({
                'raw_count': summary.raw_count,
                'cleaned_count': summary.cleaned_count,
                'quarantined_count': summary.quarantined_count,
                'duplicates_dropped': summary.duplicates_dropped,
                'fact_count': summary.fact_count,
                'audit_passed': int(summary.audit.passed),
            })
        with transaction(conn) as cursor:
            cursor.execute(RUNS_DDL)
            insert_rows(cursor, 'pipeline_runs', pd.DataFrame([row]))

    def run(self) -> RunSummary:
        """
        Rebuild silver and gold from the current bronze snapshot, then audit.

        Any failure is recorded as a FAILED run before it is re-raised.

        Raises:
            PipelineError: on duplicate keys or unresolved dimension references;
                the failing stage's tables are left at their previous version
        """
        started_at = _now()
        conn = self.connect()
        try:
            logger.info("Starting census pipeline run...")
            cleaning = transform_bronze_to_silver(conn, duplicate_policy=self.config.duplicate_policy)
            gold = build_gold_layer(conn)
            report = run_audit(read_silver(conn), self.config.audit, gold=gold)

            summary = RunSummary(
                raw_count=cleaning.raw_count,
                cleaned_count=len(cleaning.cleaned),
                quarantined_count=len(cleaning.quarantined),
                duplicates_dropped=cleaning.duplicates_dropped,
                fact_count=len(gold.fact),
                audit=report,
            )
            self._record_run(conn, started_at, "SUCCESS", summary)
            logger.info(f"Pipeline completed successfully. Layer statistics: {get_layer_stats(conn)}")
            return summary
        except Exception as e:
            logger.error(f"Error running pipeline: {e}")
            try:
                self._record_run(conn, started_at, "FAILED", error=f"{type(e).__name__}: {e}")
            except sqlite3.Error as log_error:
                logger.error(f"Could not record failed run: {log_error}")
            raise
        finally:
            conn.close()

    def audit(self) -> AuditReport:
        conn = self.connect()
        try:
            return run_audit(read_silver(conn), self.config.audit)
        finally:
            conn.close()

    def top_incomes(self, category: str, n: int, column: str = "sex") -> pd.DataFrame:
        conn = self.connect()
        try:
            return rank_by_category(read_silver(conn), category, n, column=column)
        finally:
            conn.close()

    def gender_gap(self) -> pd.DataFrame:
        conn = self.connect()
        try:
            return calculate_gender_gap(read_silver(conn))
        finally:
            conn.close()

    def export(self, upload: bool = False) -> Dict[str, str]:
        """Export every layer to Parquet and optionally upload to S3."""
        conn = self.connect()
        try:
            exported = export_layers(conn, self.config.export_dir)
        finally:
            conn.close()
        if upload:
            upload_exports(exported, self.config)
        return exported

    def get_layer_stats(self) -> Dict[str, int]:
        conn = self.connect()
        try:
            return get_layer_stats(conn)
        finally:
            conn.close()


def main(argv=None) -> int:
    """Command-line entry point for the pipeline."""
    parser = argparse.ArgumentParser(description='Run the census medallion pipeline')
    parser.add_argument('--input-dir', type=str, help='Directory of raw CSV files, one per geography')
    parser.add_argument('--db', type=str, help='Path to SQLite database')
    parser.add_argument('--export-dir', type=str, help='Directory for exported Parquet files')
    parser.add_argument('--export', action='store_true', help='Export all layers to Parquet after the run')
    parser.add_argument('--s3-bucket', type=str, help='Upload exported files to this S3 bucket')
    parser.add_argument('--duplicate-policy', choices=DUPLICATE_POLICIES, help='How to treat repeated composite keys')
    parser.add_argument('--category', type=str, default='Men', help='Category value to rank geographies by')
    parser.add_argument('--top', type=int, default=10, help='Number of geographies in the ranking')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')

    args = parser.parse_args(argv)

    config = PipelineConfig.from_env().with_overrides(
        db_path=args.db,
        export_dir=args.export_dir,
        duplicate_policy=args.duplicate_policy,
        s3_bucket=args.s3_bucket,
    )
    setup_logger(level=logging.DEBUG if args.verbose else logging.INFO, log_dir=config.log_dir)

    pipeline = CensusPipeline(config)
    try:
        if args.input_dir:
            pipeline.ingest(args.input_dir)
        summary = pipeline.run()
    except PipelineError as e:
        print(f"Pipeline failed: {e}", file=sys.stderr)
        return 1

    print("Pipeline execution completed:")
    print(f"Raw records: {summary.raw_count}")
    print(f"Cleaned records: {summary.cleaned_count}")
    print(f"Quarantined records: {summary.quarantined_count}")
    print(f"Fact records: {summary.fact_count}")
    print("\nAudit report:")
    print(json.dumps(summary.audit.to_dict(), indent=2))

    print(f"\nTop {args.top} geographies for {args.category}:")
    print(pipeline.top_incomes(args.category, args.top).to_string(index=False))
    print("\nGender income gap:")
    print(pipeline.gender_gap().to_string(index=False))

    if args.export or args.s3_bucket:
        exported = pipeline.export(upload=bool(config.s3_bucket))
        print(f"\nExported {len(exported)} tables to {config.export_dir}")

    stats = pipeline.get_layer_stats()
    print("\nLayer statistics:")
    for table_name, count in stats.items():
        print(f"{table_name}: {count} records")
    return 0


if __name__ == "__main__":
    sys.exit(main())
