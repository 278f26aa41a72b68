"""Logging configuration for shiori using loguru.

Provides centralized logging setup with file rotation (max 50MB per file).
Use get_logger() to get a logger instance for any module.
"""

import sys
from pathlib import Path

from loguru import logger as _base_logger

from models.config import settings

# Store configuration state to prevent re-initialization
_initialized = False


def configure_logging(debug: bool = False, log_file: Path | None = None) -> None:
    """Configure loguru for the entire application.

    Args:
        debug: If True, set console logging to DEBUG level instead of WARNING
        log_file: Override for the rotating log file location
    """
    global _initialized

    if _initialized:
        return

    log_file = log_file or settings.log.log_file
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Remove default handler
    _base_logger.remove()

    console_level = "DEBUG" if debug or settings.log.debug else "WARNING"
    _base_logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | <cyan>{extra[name]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=console_level,
    )

    # File handler with rotation (50MB per file, keep last 10 files)
    _base_logger.add(
        log_file,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="50 MB",
        retention=10,
        compression="zip",
        enqueue=True,  # sync workers log from many threads
    )

    _base_logger.configure(extra={"name": "shiori"})
    _initialized = True


def get_logger(name: str):
    """Get a logger instance bound to a module name.

    Handlers are installed by configure_logging() at startup (cli.py);
    until then loguru's default stderr handler is used.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound loguru logger instance
    """
    return _base_logger.bind(name=name)
