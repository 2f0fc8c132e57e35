"""Logging configuration for the Reolink client.

Logging is file-only: when a log file is given (``--log-file``), records go
to that file and never to stdout, so CLI output stays machine-readable.
Library modules log through the ``log_*`` helpers, which do nothing until
``configure_global_logger`` has been called.
"""

import logging
from pathlib import Path

LOGGER_NAME = "reolink"


def setup_logging(
    log_file: Path | str | None = None,
    log_level: str = "INFO",
    name: str = LOGGER_NAME,
) -> logging.Logger:
    """Configure a logger that writes to a file only.

    Args:
        log_file: Path to log file. If None, logging is disabled.
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        name: Logger name.

    Returns:
        Configured logger instance.

    Example:
        >>> logger = setup_logging(log_file="/tmp/reolink.log", log_level="DEBUG")
        >>> logger.debug("Token refreshed")
    """
    logger = logging.getLogger(name)
    logger.handlers.clear()

    if log_file is None:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.WARNING)
        return logger

    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)

    # Keep records out of the root logger (and therefore stdout)
    logger.propagate = False

    return logger


_logger: logging.Logger | None = None


def configure_global_logger(
    log_file: Path | str | None = None,
    log_level: str = "INFO",
) -> logging.Logger:
    """Configure the module-global logger used by the ``log_*`` helpers.

    Args:
        log_file: Path to log file. If None, logging is disabled.
        log_level: Log level string.

    Returns:
        Configured global logger.
    """
    global _logger
    _logger = setup_logging(log_file=log_file, log_level=log_level)
    return _logger


def reset_global_logger() -> None:
    """Drop the global logger so the ``log_*`` helpers become no-ops again."""
    global _logger
    _logger = None


def log_debug(message: str) -> None:
    """Log debug message if logging is configured."""
    if _logger:
        _logger.debug(message)


def log_info(message: str) -> None:
    """Log info message if logging is configured."""
    if _logger:
        _logger.info(message)


def log_warning(message: str) -> None:
    """Log warning message if logging is configured."""
    if _logger:
        _logger.warning(message)


def log_error(message: str) -> None:
    """Log error message if logging is configured."""
    if _logger:
        _logger.error(message)


def log_exception(message: str) -> None:
    """Log exception with traceback if logging is configured."""
    if _logger:
        _logger.exception(message)
