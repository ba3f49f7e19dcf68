"""Centralized logging configuration with file rotation."""

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path


_loggers: dict[str, logging.Logger] = {}

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def setup_logger(
    name: str,
    level: str | None = None,
    log_dir: str | None = None
) -> logging.Logger:
    """
    Set up a logger with both console and file handlers.

    Level and directory fall back to the LOG_LEVEL and LOG_DIR environment
    variables so library modules pick up the host's settings.

    Args:
        name: Logger name (typically module name)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger("mailhook.sync", level="DEBUG")
        >>> logger.info("Replaying history...")
    """
    if name in _loggers:
        return _loggers[name]

    level = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_path = Path(log_dir or os.getenv('LOG_DIR', 'logs'))
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))
    logger.propagate = False

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(
        logging.Formatter(CONSOLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    )

    # Daily rotation, keep 14 days; all modules share the package log file
    log_file = log_path / f"{name.split('.')[0]}.log"
    file_handler = TimedRotatingFileHandler(
        log_file,
        when='midnight',
        interval=1,
        backupCount=14,
        encoding='utf-8'
    )
    file_handler.setLevel(getattr(logging, level))
    file_handler.setFormatter(
        logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    )

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    _loggers[name] = logger

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get an existing logger or create a new one with default settings.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    if name in _loggers:
        return _loggers[name]
    return setup_logger(name)
