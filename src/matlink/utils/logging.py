"""Rotating logger setup for the mat companion library."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union


def setup_logger(
    name: str = "matlink",
    log_file: str = "./logs/matlink.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: Union[int, str] = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Setup rotating file logger with ISO 8601 timestamps.

    Child loggers (``matlink.radio``, ``matlink.coordinator`` ...) propagate
    into the handlers installed here.

    Args:
        name: Logger name
        log_file: Path to log file (created if doesn't exist)
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Logging level, either a ``logging`` constant or its name
        console: Also log to stderr

    Returns:
        Configured logger instance
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers if already configured
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger
