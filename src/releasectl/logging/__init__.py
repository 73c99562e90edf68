"""Logging configuration for releasectl."""

from releasectl.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
