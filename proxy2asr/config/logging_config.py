"""
Configure logging for the package.

This module provides a consistent logging configuration for applications
embedding proxy2asr, ensuring log messages are formatted correctly and
directed to the appropriate outputs (console, rotating file).
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from proxy2asr.config.constants import LOGGER_NAME
from proxy2asr.config.models import LoggingConfig


def configure_logging(
    name: str = LOGGER_NAME,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure a logger with console and file handlers.

    Args:
        name: Logger name; defaults to the package logger so every module
            logger (``proxy2asr.*``) inherits the handlers
        config: Logging settings; defaults to ``LoggingConfig()``

    Returns:
        logging.Logger: The configured logger instance
    """
    config = config or LoggingConfig()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.level.value))

    # Remove existing handlers if any
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        if hasattr(console_handler.stream, "reconfigure"):
            try:
                console_handler.stream.reconfigure(encoding="utf-8")  # type: ignore
            except Exception as e:
                logger.warning(f"Could not reconfigure console stream encoding: {e}")
        logger.addHandler(console_handler)

    if config.file_output:
        try:
            log_dir = Path(config.log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_dir / config.log_filename,
                maxBytes=config.max_log_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except Exception as e:
            logger.warning(f"Could not set up file logging: {e}")

    # Prevent log propagation to root logger
    logger.propagate = False

    logger.info("Logging configured")
    return logger
