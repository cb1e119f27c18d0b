# quotesync/utils/__init__.py
"""
Utility modules for quotesync.

- logging: Logging configuration with correlation id support
- context: Run context (correlation ids)
- date_utils: Day iteration and UTC helpers

Usage:
    from quotesync.utils import setup_logging, correlation_scope
    from quotesync.utils.date_utils import get_days_between
"""

from quotesync.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_scope,
)
from quotesync.utils.logging import setup_logging

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
]
