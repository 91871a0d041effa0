"""Utility modules."""
from .logging import setup_logging, get_logger
from .retry import create_retry_decorator

__all__ = ["setup_logging", "get_logger", "create_retry_decorator"]
