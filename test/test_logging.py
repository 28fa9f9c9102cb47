import logging
import logging.handlers
import os
from unittest.mock import patch

import pytest

from bedrockci.logging import DEFAULT_LOG_FILENAME, log_separator, setup_logging


@pytest.fixture
def mock_log_dir(tmp_path):
    log_dir = tmp_path / "test_logs"
    yield str(log_dir)


def test_setup_logging_creates_log_directory(mock_log_dir):
    """Test that the log directory is created."""
    setup_logging(log_dir=mock_log_dir)
    assert os.path.isdir(mock_log_dir)


def test_setup_logging_creates_timed_rotating_file_handler(mock_log_dir):
    logger = setup_logging(log_dir=mock_log_dir, log_keep=5)
    file_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].backupCount == 5
    assert file_handlers[0].baseFilename == os.path.join(mock_log_dir, DEFAULT_LOG_FILENAME)


def test_setup_logging_console_only_without_log_dir():
    logger = setup_logging(cli_log_level=logging.ERROR)
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.StreamHandler)
    assert logger.handlers[0].level == logging.ERROR


def test_setup_logging_is_idempotent(mock_log_dir):
    logger = setup_logging(log_dir=mock_log_dir)
    handlers = list(logger.handlers)
    assert setup_logging(log_dir=mock_log_dir).handlers == handlers


def test_setup_logging_force_reconfigure_replaces_handlers(mock_log_dir):
    logger = setup_logging(log_dir=mock_log_dir)
    old_handlers = list(logger.handlers)

    logger = setup_logging(force_reconfigure=True)

    assert len(logger.handlers) == 1
    assert not any(h in old_handlers for h in logger.handlers)


def test_setup_logging_level_covers_both_handlers(mock_log_dir):
    logger = setup_logging(log_dir=mock_log_dir, file_log_level=logging.DEBUG, cli_log_level=logging.WARNING)
    assert logger.level == logging.DEBUG


def test_setup_logging_file_handler_error_is_logged(mock_log_dir):
    with patch("logging.handlers.TimedRotatingFileHandler", side_effect=OSError("disk full")):
        logger = setup_logging(log_dir=mock_log_dir)
    assert all(not isinstance(h, logging.FileHandler) for h in logger.handlers)


def test_log_separator_writes_banner_to_file(mock_log_dir):
    logger = setup_logging(log_dir=mock_log_dir)
    log_separator(logger, app_name="BedrockCI", app_version="9.9.9")
    for handler in logger.handlers:
        handler.flush()

    with open(os.path.join(mock_log_dir, DEFAULT_LOG_FILENAME), "r", encoding="utf-8") as f:
        content = f.read()
    assert "BedrockCI v9.9.9" in content
    assert "Python Version:" in content
