"""
Logging configuration for CitationLedger.

Provides centralized logging setup with:
- Console output (always enabled)
- File logging with rotation (configurable)
- Separate error log for critical issues
"""

import sys
from pathlib import Path
from datetime import datetime
from loguru import logger

# Determine log directory
LOG_DIR = Path(__file__).parent.parent / '.data' / 'logs'

# Flag to track if logging is already configured
_logging_configured = False


def setup_logging(
    log_level: str = "INFO",
    enable_file_logging: bool = True,
    rotation_size_mb: int = 10,
    retention_count: int = 5,
    verbose: bool = False
):
    """
    Configure logging for CitationLedger.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        enable_file_logging: Whether to write logs to files
        rotation_size_mb: Size in MB before rotating log file
        retention_count: Number of rotated log files to keep
        verbose: Enable verbose/debug output
    """
    global _logging_configured

    if _logging_configured:
        return

    # Remove default handler
    logger.remove()

    # Determine effective log level
    effective_level = "DEBUG" if verbose else log_level.upper()

    # Console handler - always enabled
    console_format = (
        "<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> | "
        "<level>{message}</level>"
    )
    logger.add(
        sys.stderr,
        format=console_format,
        level=effective_level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    # File logging
    if enable_file_logging:
        # Ensure log directory exists
        LOG_DIR.mkdir(parents=True, exist_ok=True)

        # Main application log
        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )

        main_log = LOG_DIR / "citeledger.log"
        logger.add(
            str(main_log),
            format=file_format,
            level="DEBUG",  # Always capture DEBUG to file for troubleshooting
            rotation=f"{rotation_size_mb} MB",
            retention=retention_count,
            compression="zip",
            backtrace=True,
            enqueue=True,  # Thread-safe
        )

        # Separate error log for critical issues
        error_log = LOG_DIR / "errors.log"
        logger.add(
            str(error_log),
            format=file_format,
            level="ERROR",
            rotation=f"{rotation_size_mb} MB",
            retention=retention_count,
            compression="zip",
            backtrace=True,
            enqueue=True,
        )

        # Operation log - one structured line per engine operation
        operations_log = LOG_DIR / "document_operations.log"
        logger.add(
            str(operations_log),
            format=file_format,
            level="INFO",
            rotation=f"{rotation_size_mb} MB",
            retention=retention_count,
            compression="zip",
            filter=lambda record: "operation" in record["extra"],
            enqueue=True,
        )

        logger.info(f"File logging enabled. Log directory: {LOG_DIR}")

    _logging_configured = True
    logger.info(f"CitationLedger logging initialized (level={effective_level})")


def get_log_directory() -> Path:
    """Return the log directory path."""
    return LOG_DIR


def log_document_operation(operation: str, document_id: str, details: dict = None):
    """
    Log a document operation with structured data.

    Args:
        operation: Type of operation (ingest, reorder, delete, convert, export)
        document_id: Identifier of the document
        details: Additional details as a dictionary
    """
    details = dict(details or {})
    details['timestamp'] = datetime.now().isoformat()
    details['document_id'] = document_id
    details['operation'] = operation

    logger.bind(**details).info(
        f"Document {operation}: {document_id} | {details}"
    )


def init_from_config():
    """Initialize logging from config settings."""
    from citeledger.config import config
    setup_logging(
        log_level=config.LOG_LEVEL,
        enable_file_logging=config.ENABLE_FILE_LOGGING,
        rotation_size_mb=config.LOG_ROTATION_SIZE_MB,
        retention_count=config.LOG_RETENTION_COUNT,
        verbose=config.VERBOSE,
    )


__all__ = [
    'setup_logging',
    'get_log_directory',
    'log_document_operation',
    'init_from_config',
]
