import os
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from dotenv import load_dotenv

DEFAULT_DB_PATH = "database/census.db"
DEFAULT_EXPORT_DIR = "data/export"
DEFAULT_LOG_DIR = "logs"
DEFAULT_MAX_NULL_RATIO = 0.25

DUPLICATE_POLICIES = ("fail", "keep_first")

CRITICAL_COLUMNS = ("average_monthly_income", "occupied_population")
COMPOSITE_KEY = ("geography_id", "sex", "race_or_color")


@dataclass(frozen=True)
class AuditConfig:
    """Thresholds for the silver-layer quality audit."""

    max_null_ratio: float = DEFAULT_MAX_NULL_RATIO
    critical_columns: Tuple[str, ...] = CRITICAL_COLUMNS
    key: Tuple[str, ...] = COMPOSITE_KEY

    def __post_init__(self):
        if not 0.0 <= self.max_null_ratio <= 1.0:
            raise ValueError(f"max_null_ratio must be within [0, 1], got {self.max_null_ratio}")


@dataclass(frozen=True)
class PipelineConfig:
    """Runtime settings for a pipeline run."""

    db_path: str = DEFAULT_DB_PATH
    export_dir: str = DEFAULT_EXPORT_DIR
    log_dir: str = DEFAULT_LOG_DIR
    duplicate_policy: str = "fail"
    audit: AuditConfig = field(default_factory=AuditConfig)
    s3_bucket: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"

    def __post_init__(self):
        if self.duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(
                f"duplicate_policy must be one of {DUPLICATE_POLICIES}, got {self.duplicate_policy!r}"
            )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PipelineConfig":
        """
        Build a config from environment variables, loading a .env file first.

        Args:
            env_file: Optional path to a .env file (default: search from cwd)

        Returns:
            PipelineConfig populated from CENSUS_* and AWS_* variables
        """
        load_dotenv(env_file)

        ratio = os.environ.get("CENSUS_MAX_NULL_RATIO")
        try:
            max_null_ratio = float(ratio) if ratio else DEFAULT_MAX_NULL_RATIO
        except ValueError:
            raise ValueError(f"CENSUS_MAX_NULL_RATIO is not a number: {ratio!r}") from None

        return cls(
            db_path=os.environ.get("CENSUS_DB_PATH", DEFAULT_DB_PATH),
            export_dir=os.environ.get("CENSUS_EXPORT_DIR", DEFAULT_EXPORT_DIR),
            log_dir=os.environ.get("CENSUS_LOG_DIR", DEFAULT_LOG_DIR),
            duplicate_policy=os.environ.get("CENSUS_DUPLICATE_POLICY", "fail"),
            audit=AuditConfig(max_null_ratio=max_null_ratio),
            s3_bucket=os.environ.get("CENSUS_S3_BUCKET") or None,
            aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
            aws_region=os.environ.get("AWS_REGION", "us-east-1"),
        )

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
