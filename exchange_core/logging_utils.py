# -*- coding: utf-8 -*-
"""
Logging Utilities
=================

Shared logger factory.

- console handler, plus an optional daily-rotated file
- one configured logger per (name, component, log_file)
- configure_logging() applies a level to the whole exchange_core tree
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(name)s] %(message)s"
LOG_FORMAT_DETAILED = "%(asctime)s [%(levelname)-8s] [%(name)s] [%(funcName)s:%(lineno)d] %(message)s"

DEFAULT_LOG_DIR = Path("logs")

_loggers: Dict[str, logging.Logger] = {}


def get_logger(
    name: str,
    component: Optional[str] = None,
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    detailed: bool = False,
    log_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    Return a configured logger.

    Args:
        name: logger name (usually __name__)
        component: component name, used for the log file name
        log_file: log file name (default: "<component>.log")
        level: logging level
        detailed: include function name and line number
        log_dir: directory for the file handler (default: ./logs)

    Returns:
        logging.Logger
    """
    cache_key = f"{name}:{component}:{log_file}"
    if cache_key in _loggers:
        return _loggers[cache_key]

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT_DETAILED if detailed else LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file or component:
        directory = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(directory / (log_file or f"{component}.log")),
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _loggers[cache_key] = logger
    return logger


def configure_logging(level: Union[int, str] = logging.INFO, **kwargs) -> logging.Logger:
    """
    Configure the package root logger ("exchange_core").

    Module loggers (logging.getLogger(__name__)) propagate to it.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    return get_logger("exchange_core", level=level, **kwargs)


def reset_loggers() -> None:
    """Drop every configured logger (tests)"""
    for logger in _loggers.values():
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()
    _loggers.clear()
