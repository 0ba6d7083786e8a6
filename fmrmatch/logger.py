"""
fmrmatch Logging System
Provides structured logging to separate files with automatic rotation.

Nothing is written until configure_logging() is called; library users get
silent loggers under the "fmrmatch" namespace.

Log Files:
- access.log: HTTP requests (IP, endpoint, status, duration)
- match.log: Matching operations (verify, identify results)
- error.log: Application errors and exceptions
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Dict, Any


ROOT_LOGGER_NAME = "fmrmatch"

# Log formats
DETAILED_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# Log file names
ACCESS_LOG = "access.log"
MATCH_LOG = "match.log"
ERROR_LOG = "error.log"


logging.getLogger(ROOT_LOGGER_NAME).addHandler(logging.NullHandler())

# Specialized loggers
access_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.access")
match_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.match")
error_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.error")


def _create_rotating_handler(
    log_file: Path,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    formatter_string: Optional[str] = None
) -> RotatingFileHandler:
    """
    Create a rotating file handler.

    Args:
        log_file: Path to the log file
        max_bytes: Max file size before rotation (default 10MB)
        backup_count: Number of backup files to keep (default 5)
        formatter_string: Log format string (default DETAILED_FORMAT)

    Returns:
        Configured RotatingFileHandler
    """
    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )

    formatter = logging.Formatter(formatter_string or DETAILED_FORMAT)
    handler.setFormatter(formatter)

    return handler


def _attach(
    logger: logging.Logger,
    log_file: Path,
    level: int,
    verbose: bool,
    max_bytes: int,
    backup_count: int
) -> None:
    # Avoid duplicate handlers
    for handler in list(logger.handlers):
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_file.resolve():
            return

    logger.setLevel(level)
    logger.propagate = False  # Don't propagate to root logger
    logger.addHandler(_create_rotating_handler(log_file, max_bytes, backup_count))

    if verbose:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(DETAILED_FORMAT))
        logger.addHandler(console)


def configure_logging(
    log_dir: Path,
    verbose: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> None:
    """
    Attach rotating file handlers to the fmrmatch loggers.

    Args:
        log_dir: Directory receiving access.log, match.log and error.log
        verbose: Also echo to the console
        max_bytes: Max file size before rotation
        backup_count: Number of backup files to keep
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    _attach(access_logger, log_dir / ACCESS_LOG, logging.INFO, verbose, max_bytes, backup_count)
    _attach(match_logger, log_dir / MATCH_LOG, logging.INFO, verbose, max_bytes, backup_count)
    _attach(error_logger, log_dir / ERROR_LOG, logging.WARNING, verbose, max_bytes, backup_count)


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger inside the fmrmatch namespace.

    Args:
        name: Logger name (e.g. "decoder")

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


# Convenience functions

def log_access(
    ip: str,
    method: str,
    endpoint: str,
    status_code: int,
    duration_ms: float
):
    """
    Log HTTP access.

    Args:
        ip: Client IP address
        method: HTTP method (GET, POST, etc.)
        endpoint: Request endpoint
        status_code: HTTP status code
        duration_ms: Request duration in milliseconds
    """
    access_logger.info(
        f"{ip} - {method} {endpoint} - {status_code} - {duration_ms:.2f}ms"
    )


def log_match(
    operation: str,
    key: Optional[Any],
    result: str,
    details: Optional[Dict[str, Any]] = None
):
    """
    Log matching operation.

    Args:
        operation: Operation type (VERIFY, IDENTIFY)
        key: Best-scoring identity key or None
        result: Operation result (MATCH, NO_MATCH, FAILURE)
        details: Additional details dict (score, loaded templates, ...)
    """
    detail_str = ""
    if details:
        detail_parts = [f"{k}={v}" for k, v in details.items()]
        detail_str = f" - {', '.join(detail_parts)}"

    match_logger.info(f"{operation} {result} - key={key}{detail_str}")


def log_error(
    error: BaseException,
    context: Optional[str] = None,
    ip: Optional[str] = None
):
    """
    Log application error.

    Args:
        error: Exception object
        context: Context where error occurred (endpoint, function name, etc.)
        ip: Client IP address (optional)
    """
    context_info = f" in {context}" if context else ""
    ip_info = f" ip={ip}" if ip else ""

    error_logger.error(
        f"{type(error).__name__}: {str(error)}{context_info}{ip_info}",
        exc_info=error
    )


def log_startup(info: Dict[str, Any]):
    """
    Log server startup information.

    Args:
        info: Startup info dict (host, port, workers, threshold, etc.)
    """
    access_logger.info("=" * 70)
    access_logger.info("FMRMATCH SERVER STARTING")
    access_logger.info("=" * 70)

    for key, value in info.items():
        access_logger.info(f"{key}: {value}")

    access_logger.info("=" * 70)


def log_shutdown():
    """Log server shutdown."""
    access_logger.info("=" * 70)
    access_logger.info("FMRMATCH SERVER SHUTTING DOWN")
    access_logger.info("=" * 70)

