# quotesync/utils/context.py
"""
Run context management.

Each synchronization run gets a correlation id so every log line emitted
while it executes (including lines from provider worker threads that copy
the context) can be traced back to the run.

Uses Python's contextvars, which also propagates into
concurrent.futures workers when the submitting code copies the context.

Usage:
    from quotesync.utils.context import correlation_scope

    with correlation_scope("sync"):
        service.sync_market_data()
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """Return the correlation id of the current run, or None if not set."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


def new_correlation_id(prefix: str = "run") -> str:
    """Generate a short, log-friendly correlation id."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@contextmanager
def correlation_scope(prefix: str = "run") -> Iterator[str]:
    """
    Bind a fresh correlation id for the duration of the block.

    An id that is already bound (e.g. by an outer job runner) is reused.
    """
    existing = _correlation_id_var.get()
    if existing is not None:
        yield existing
        return

    token = _correlation_id_var.set(new_correlation_id(prefix))
    try:
        yield _correlation_id_var.get()
    finally:
        _correlation_id_var.reset(token)
