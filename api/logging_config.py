"""
Logging configuration for OpenOrbit.
Provides structured logging with proper formatting.

Modules log through logging.getLogger(__name__) with "[Component]" message
prefixes; setup_logging installs the handlers once at process start.
"""

import sys
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import get_config


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Color a copy so file handlers sharing the record stay plain
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(name: Optional[str] = None, log_dir: Optional[str] = None,
                  level: Optional[str] = None, file_name: str = "openorbit") -> logging.Logger:
    """
    Setup and return a configured logger.

    Args:
        name: Logger name (default: root logger, so every module logger is covered)
        log_dir: Directory for log files (default: config.LOG_DIR)
        level: Log level name (default: config.LOG_LEVEL)
        file_name: Base name of the log files

    Returns:
        Configured logger instance
    """
    cfg = get_config()
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if getattr(logger, "_openorbit_configured", False):
        return logger

    level_name = (level or cfg.LOG_LEVEL).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(console_handler)

    directory = Path(log_dir or cfg.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)

    file_format = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler with rotation
    file_handler = RotatingFileHandler(
        directory / f"{file_name}.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    # Error file handler (errors and above)
    error_handler = RotatingFileHandler(
        directory / f"{file_name}_errors.log",
        maxBytes=10 * 1024 * 1024,
        backupCount=5
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_format)
    logger.addHandler(error_handler)

    # aiosqlite traces every statement at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger._openorbit_configured = True
    return logger


def log_request(method: str, path: str, status_code: int = None, duration_ms: float = None):
    """Log an HTTP request."""
    logger = logging.getLogger("api.http")
    if duration_ms is not None:
        logger.info(f"HTTP {method} {path} -> {status_code} ({duration_ms:.2f}ms)")
    else:
        logger.info(f"HTTP {method} {path}")
