"""Tests for the pipeline logger hierarchy."""

import logging

import pytest

from census_pipeline.logger import ROOT_LOGGER, get_logger, setup_logger


@pytest.fixture
def root_logger():
    root = logging.getLogger(ROOT_LOGGER)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.NOTSET)
    root.propagate = True
    get_logger("SilverLayer").setLevel(logging.NOTSET)


def _flush(logger):
    for handler in logger.handlers:
        handler.flush()


class TestSetupLogger:
    def test_stage_logger_writes_to_root_file(self, tmp_path, root_logger):
        setup_logger(log_file="run.log", log_dir=str(tmp_path / "logs"))
        get_logger("GoldLayer").info("built 12 fact rows")
        _flush(root_logger)

        content = (tmp_path / "logs" / "run.log").read_text()
        assert "CensusPipeline.GoldLayer - INFO - built 12 fact rows" in content

    def test_root_does_not_propagate(self, tmp_path, root_logger):
        setup_logger(log_dir=str(tmp_path))
        assert root_logger.propagate is False
        assert get_logger("Export").propagate is True

    def test_repeated_setup_replaces_handlers(self, tmp_path, root_logger):
        setup_logger(log_dir=str(tmp_path))
        setup_logger(log_dir=str(tmp_path))
        assert len(root_logger.handlers) == 2

    def test_stage_level_override(self, tmp_path, root_logger):
        setup_logger(log_file="run.log", log_dir=str(tmp_path), level=logging.WARNING,
                     stage_levels={"SilverLayer": logging.DEBUG})
        get_logger("SilverLayer").debug("parsed income column")
        get_logger("BronzeLayer").info("ingested 3 files")
        _flush(root_logger)

        content = (tmp_path / "run.log").read_text()
        assert "parsed income column" in content
        assert "ingested 3 files" not in content

    def test_stage_levels_reset_on_new_setup(self, tmp_path, root_logger):
        setup_logger(log_dir=str(tmp_path), stage_levels={"SilverLayer": logging.DEBUG})
        setup_logger(log_dir=str(tmp_path))
        assert get_logger("SilverLayer").level == logging.NOTSET
        assert get_logger("SilverLayer").getEffectiveLevel() == logging.INFO
