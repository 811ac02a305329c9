"""
Logging module for the multisite tenant mover
"""

import json
import logging
import os
from typing import Any, Optional

from wpms_mover.constants import LOGGER_NAME


class JsonFormatter(logging.Formatter):
    def format(self, record):
        data = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
        }
        # Include the move context attributes passed through log_with_context
        for key in ("tenant", "env", "phase", "tool"):
            value = getattr(record, key, None)
            if value is not None:
                data[key] = value
        return json.dumps(data)


class EnhancedFormatter(logging.Formatter):
    """
    Formatter with a verbose mode (module and line number) that prefixes
    tenant-scoped records with the tenant id
    """

    def __init__(self, fmt=None, datefmt=None, style="%", verbose=False):
        if verbose:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(lineno)d] - %(message)s"
        elif not fmt:
            fmt = "%(asctime)s - %(levelname)s - %(message)s"

        super().__init__(fmt, datefmt, style)

    def format(self, record):
        result = super().format(record)

        tenant = getattr(record, "tenant", None)
        if tenant:
            result = f"[tenant {tenant}] {result}"

        # Tool diagnostics are multi-line, keep them below the message
        stderr = getattr(record, "stderr", None)
        if stderr:
            result += f"\n{stderr.rstrip()}"

        return result


def setup_main_log_file(output_dir: str) -> logging.FileHandler:
    """
    Set up a file handler for the main log file that contains every record.

    Args:
        output_dir: The output directory path

    Returns:
        The file handler for the main log file
    """
    os.makedirs(output_dir, exist_ok=True)
    log_file = os.path.join(output_dir, "move.log")

    file_handler = logging.FileHandler(log_file, mode="w")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        EnhancedFormatter("%(asctime)s - %(levelname)s - %(message)s")
    )

    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(file_handler)

    logger.info(f"Main log file created at: {log_file}")
    return file_handler


def setup_logger(
    verbose: bool = False, output_dir: Optional[str] = None
) -> logging.Logger:
    """
    Set up and return the logger with appropriate formatting.

    Args:
        verbose: If True, set console handler to DEBUG level; otherwise INFO level
        output_dir: Optional output directory for the main log file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to prevent duplicate messages
    if logger.handlers:
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()

    logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(EnhancedFormatter(verbose=verbose))
    logger.addHandler(console_handler)

    if output_dir:
        setup_main_log_file(output_dir)

    return logger


class TenantFilter(logging.Filter):
    """Only pass records tagged with one tenant id."""

    def __init__(self, tenant: str) -> None:
        super().__init__()
        self.tenant = tenant

    def filter(self, record):
        return getattr(record, "tenant", None) == self.tenant


def setup_tenant_logger(output_dir: str, tenant: str) -> logging.FileHandler:
    """
    Set up a file handler for tenant-specific logging.

    Args:
        output_dir: The output directory path
        tenant: The tenant id

    Returns:
        The file handler for the tenant log
    """
    logs_dir = os.path.join(output_dir, "tenant_logs")
    os.makedirs(logs_dir, exist_ok=True)
    log_file = os.path.join(logs_dir, f"tenant_{tenant}.log")

    file_handler = logging.FileHandler(log_file, mode="w")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(EnhancedFormatter())
    file_handler.addFilter(TenantFilter(tenant))

    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(file_handler)

    logger.debug(f"Tenant log file created at: {log_file}", extra={"tenant": tenant})
    return file_handler


def remove_handler(handler: logging.Handler) -> None:
    """Detach and close a handler added by one of the setup functions."""
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Additional context to include in the log record
            (``tenant``, ``env``, ``phase``, ``tool``, ``stderr``, ``exc_info``)
    """
    exc_info = kwargs.pop("exc_info", None)
    extras = {k: v for k, v in kwargs.items() if v is not None}

    logger = logging.getLogger(LOGGER_NAME)
    logger.log(level, message, extra=extras, exc_info=exc_info)


def get_logger():
    """Get the wpms_mover logger, creating it with defaults if needed."""
    mover_logger = logging.getLogger(LOGGER_NAME)
    if not mover_logger.handlers:
        mover_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(EnhancedFormatter())
        mover_logger.addHandler(handler)
    return mover_logger


# Module logger - will be properly initialized when setup_logger is called
logger = get_logger()
