import os
import logging
from typing import Dict, Optional

ROOT_LOGGER = "CensusPipeline"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = "census_pipeline.log"


def get_logger(name: str) -> logging.Logger:
    """Return a stage logger ("SilverLayer", "Export", ...) under the pipeline root."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logger(
    log_file: str = DEFAULT_LOG_FILE,
    level: int = logging.INFO,
    log_dir: str = "logs",
    stage_levels: Optional[Dict[str, int]] = None
) -> logging.Logger:
    """
    Configure the pipeline logger hierarchy.

    Handlers are attached once, to the CensusPipeline root; every stage logger
    reaches them through propagation. The root stops propagating so records
    are not printed again by an application-level root handler.

    Args:
        log_file: Log filename inside log_dir
        level: Level of the root logger (default: INFO)
        log_dir: Directory for log files (default: logs)
        stage_levels: Per-stage overrides, e.g. {"SilverLayer": logging.DEBUG}.
            Stages not listed are reset to inherit the root level.

    Returns:
        The configured root pipeline logger
    """
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, log_file)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False

    # Re-running setup replaces the handlers instead of stacking them
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in (logging.FileHandler(log_path), logging.StreamHandler()):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    stage_levels = stage_levels or {}
    prefix = f"{ROOT_LOGGER}."
    for name, existing in list(logging.Logger.manager.loggerDict.items()):
        if name.startswith(prefix) and isinstance(existing, logging.Logger):
            existing.setLevel(logging.NOTSET)
            existing.propagate = True
    for stage, stage_level in stage_levels.items():
        get_logger(stage).setLevel(stage_level)

    root.info(f"Log file is being saved to: {os.path.abspath(log_path)}")
    return root
