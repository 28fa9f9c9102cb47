# bedrockci/logging.py
"""Logging configuration for bedrockci.

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
attached here, by the command-line entry point, so that embedding the engine
in another tool never produces duplicate output.
"""
import logging
import logging.handlers
import os
import platform
import sys
from datetime import datetime
from typing import Optional

DEFAULT_LOG_FILENAME = "bedrockci.log"
DEFAULT_LOG_KEEP = 3
LOGGER_NAME = "bedrockci"

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    log_dir: Optional[str] = None,
    log_filename: str = DEFAULT_LOG_FILENAME,
    log_keep: int = DEFAULT_LOG_KEEP,
    file_log_level: int = logging.INFO,
    cli_log_level: int = logging.WARNING,
    when: str = "midnight",
    interval: int = 1,
    force_reconfigure: bool = False,
) -> logging.Logger:
    """Sets up the package logger with a console handler and a rotating file.

    Args:
        log_dir: Directory to store log files. If ``None``, only console
            logging is configured.
        log_filename: The base name of the log file.
        log_keep: Number of backup log files to keep.
        file_log_level: The minimum level written to the log file.
        cli_log_level: The minimum level written to the console (stderr).
        when: Indicates when to rotate. See TimedRotatingFileHandler docs.
        interval: The rotation interval.
        force_reconfigure: Remove existing handlers before adding new ones.

    Returns:
        The configured ``bedrockci`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)

    if force_reconfigure:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    if logger.handlers:
        return logger

    logger.setLevel(min(file_log_level, cli_log_level) if log_dir else cli_log_level)
    formatter = logging.Formatter(_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(cli_log_level)
    logger.addHandler(console_handler)

    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = logging.handlers.TimedRotatingFileHandler(
                os.path.join(log_dir, log_filename),
                when=when,
                interval=interval,
                backupCount=log_keep,
                encoding="utf-8",
            )
            handler.setLevel(file_log_level)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        except OSError as e:
            logger.error(f"Failed to create log file handler in '{log_dir}': {e}")

    logger.debug(
        f"Logging setup complete. Dir: {log_dir}, File level: {file_log_level}, "
        f"CLI level: {cli_log_level}"
    )
    return logger


def log_separator(
    logger: logging.Logger, app_name: str = "bedrockci", app_version: str = "0.0.0"
) -> None:
    """Writes a banner to the logger's file handlers.

    The banner marks the start of a run in the rotating log and records the
    application version, operating system, Python version and time.
    """
    separator_line = "=" * 100
    info_lines = [
        f"{app_name} v{app_version}",
        f"Operating System: {platform.system()} {platform.release()}",
        f"Python Version: {platform.python_version()}",
        f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
    ]

    for handler in logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            continue
        if getattr(handler, "stream", None) is None:
            continue
        try:
            handler.stream.write("\n" + separator_line + "\n")
            for line in info_lines:
                handler.stream.write(line + "\n")
            handler.stream.write(separator_line + "\n\n")
            handler.stream.flush()
        except ValueError as e:
            # Stream was closed underneath us (e.g. during interpreter shutdown).
            print(f"Warning: Could not write to log file: {e}", file=sys.stderr)
