import datetime
import os
import sqlite3
from typing import Dict, List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from census_pipeline.config import PipelineConfig
from census_pipeline.logger import get_logger
from census_pipeline.store import LAYER_TABLES, read_table, table_exists

logger = get_logger("Export")


def export_table_to_parquet(conn: sqlite3.Connection, table_name: str, output_file: str) -> Optional[str]:
    """
    Write one table to a Parquet file.

    Returns:
        The output path, or None when the table is missing or empty
    """
    if not table_exists(conn, table_name):
        logger.warning(f"Table '{table_name}' does not exist. Nothing to export.")
        return None
    df = read_table(conn, table_name)
    if df.empty:
        logger.warning(f"Table '{table_name}' is empty. No data to export.")
        return None
    df.to_parquet(output_file, index=False)
    logger.info(f"Exported {len(df)} records from table '{table_name}' to {output_file}")
    return output_file


def export_layers(
    conn: sqlite3.Connection,
    output_dir: str,
    layers: Optional[List[str]] = None,
    timestamp: Optional[str] = None
) -> Dict[str, str]:
    """
    Export every table of the given layers with a timestamped file name.

    Args:
        conn: Open connection to the pipeline database
        output_dir: Directory for the Parquet files
        layers: Subset of 'bronze', 'silver', 'gold' (default: all)
        timestamp: File name prefix (default: current time, e.g. 2023-10-06_14-30-45)

    Returns:
        Dictionary of table name to written file path
    """
    os.makedirs(output_dir, exist_ok=True)
    ts = timestamp or datetime.datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    exported = {}
    for layer in layers or list(LAYER_TABLES):
        if layer not in LAYER_TABLES:
            raise ValueError(f"Invalid layer: {layer}")
        for table_name in LAYER_TABLES[layer]:
            output_file = os.path.join(output_dir, f"{ts}_{table_name}.parquet")
            if export_table_to_parquet(conn, table_name, output_file):
                exported[table_name] = output_file
    return exported


def upload_file_to_s3(local_file: str, bucket: str, s3_key: str, config: PipelineConfig) -> bool:
    """Upload a local file to the specified bucket and key."""
    s3_client = boto3.client('s3',
                             aws_access_key_id=config.aws_access_key_id,
                             aws_secret_access_key=config.aws_secret_access_key,
                             region_name=config.aws_region)
    try:
        s3_client.upload_file(local_file, bucket, s3_key)
        logger.info(f"Uploaded {local_file} to s3://{bucket}/{s3_key}")
        return True
    except (BotoCoreError, ClientError, S3UploadFailedError) as e:
        logger.error(f"Failed to upload {local_file} to s3://{bucket}/{s3_key}: {e}")
        return False


def upload_exports(exported: Dict[str, str], config: PipelineConfig) -> List[str]:
    """
    Upload exported files, one prefix per layer.

    Returns:
        S3 keys that were uploaded successfully
    """
    if not config.s3_bucket:
        raise ValueError("No S3 bucket configured")
    layer_of = {table: layer for layer, tables in LAYER_TABLES.items() for table in tables}
    uploaded = []
    for table_name, local_file in exported.items():
        s3_key = f"{layer_of.get(table_name, 'other')}/{os.path.basename(local_file)}"
        if upload_file_to_s3(local_file, config.s3_bucket, s3_key, config):
            uploaded.append(s3_key)
    return uploaded
