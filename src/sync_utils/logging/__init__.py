"""
Structured logging configuration for the sync engine

Provides JSON-formatted logging with contextual information for running
under a scheduler, and a colored console format for interactive use.

Usage:
    from sync_utils.logging import setup_logging, get_logger

    # Setup logging (call once at application startup)
    setup_logging(level="INFO", log_file="C:/Users/Public/offline-sync.log")

    logger = get_logger(__name__)
    logger.info("Synced table", extra={"table_name": "Item", "uploaded": 3})
"""

from .config import configure_from_env, get_logger, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    "configure_from_env",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
