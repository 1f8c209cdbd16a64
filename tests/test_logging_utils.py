"""
Logger factory tests
"""

import logging
import logging.handlers

import pytest

from exchange_core.logging_utils import configure_logging, get_logger, reset_loggers


@pytest.fixture(autouse=True)
def clean_loggers():
    reset_loggers()
    yield
    reset_loggers()


class TestGetLogger:

    def test_console_only(self):
        logger = get_logger("exchange_core.test.console")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)

    def test_cached(self):
        assert get_logger("exchange_core.test.cache") is get_logger("exchange_core.test.cache")

    def test_component_file(self, tmp_path):
        logger = get_logger("exchange_core.test.file", component="deribit", log_dir=tmp_path)
        logger.info("hello")

        file_handlers = [
            h for h in logger.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        file_handlers[0].flush()
        assert "hello" in (tmp_path / "deribit.log").read_text(encoding="utf-8")


class TestConfigureLogging:

    def test_string_level(self):
        logger = configure_logging("debug")

        assert logger.name == "exchange_core"
        assert logger.level == logging.DEBUG
