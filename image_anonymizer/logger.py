"""
Simple logging wrapper for the image anonymizer.

Provides consistent logging across all modules with configurable levels.
Recognized image text is personal data: pass it through ``preview_text``
and only log it at DEBUG.
"""

import logging
import sys
from typing import Optional
from pathlib import Path


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def parse_level(level: str) -> int:
    """Map a level name to its logging constant."""
    name = str(level).upper()
    if name not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level!r} (expected one of {', '.join(LOG_LEVELS)})")
    return getattr(logging, name)


def _build_handlers(log_file: Optional[Path]) -> list:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handlers = [console_handler]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    return handlers


def get_logger(
    name: str,
    level: str = "INFO",
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Get a configured logger instance.

    When the root logger already has handlers (the CLI sets them up), the
    logger is returned as is and propagates to them.

    Args:
        name: Logger name (usually __name__)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to
    """
    logger = logging.getLogger(name)
    if logger.handlers or logging.getLogger().handlers:
        return logger

    logger.setLevel(parse_level(level))
    for handler in _build_handlers(log_file):
        logger.addHandler(handler)
    return logger


def setup_root_logger(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Replace the root logger's handlers with console (and optional file) output.

    Args:
        level: Log level for root logger
        log_file: Optional file to write all logs to
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(parse_level(level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for handler in _build_handlers(log_file):
        root_logger.addHandler(handler)


def set_log_level(level: str) -> None:
    """Change the root level once the configuration file has been read."""
    logging.getLogger().setLevel(parse_level(level))


def preview_text(text: Optional[str], limit: int = 24) -> str:
    """Quoted, shortened form of a recognized string for debug messages."""
    if text is None:
        return "<none>"
    if len(text) <= limit:
        return repr(text)
    return repr(text[:limit]) + f"... ({len(text)} chars)"


class LoggerMixin:
    """Mixin class to add logging capability to any class."""

    @property
    def logger(self) -> logging.Logger:
        """Logger named after the concrete class, under the package logger."""
        return logging.getLogger(f"image_anonymizer.{self.__class__.__name__}")

    def log_debug(self, message: str, *args, **kwargs) -> None:
        self.logger.debug(message, *args, **kwargs)

    def log_info(self, message: str, *args, **kwargs) -> None:
        self.logger.info(message, *args, **kwargs)

    def log_warning(self, message: str, *args, **kwargs) -> None:
        self.logger.warning(message, *args, **kwargs)

    def log_error(self, message: str, *args, **kwargs) -> None:
        self.logger.error(message, *args, **kwargs)
