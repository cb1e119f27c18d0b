# tests/test_logging.py
"""
Tests for run correlation ids and logging setup.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context

import pytest

from quotesync.utils.context import (
    clear_correlation_id,
    correlation_scope,
    get_correlation_id,
    new_correlation_id,
    set_correlation_id,
)
from quotesync.utils.logging import (
    NO_CORRELATION_ID,
    CorrelationIdFilter,
    JsonFormatter,
    _get_log_level,
    setup_logging,
)


def make_record(message: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="quotesync.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationIdContext:
    """Tests for correlation ID context functions."""

    def test_get_returns_none_when_not_set(self):
        """Should return None when correlation ID is not set."""
        clear_correlation_id()
        assert get_correlation_id() is None

    def test_set_and_get_correlation_id(self):
        """Should set and retrieve correlation ID."""
        set_correlation_id("test-correlation-123")
        assert get_correlation_id() == "test-correlation-123"
        clear_correlation_id()

    def test_new_correlation_id_has_prefix(self):
        correlation_id = new_correlation_id("sync")
        assert correlation_id.startswith("sync-")
        assert len(correlation_id) == len("sync-") + 12

    def test_scope_binds_and_resets(self):
        clear_correlation_id()
        with correlation_scope("sync") as correlation_id:
            assert correlation_id.startswith("sync-")
            assert get_correlation_id() == correlation_id
        assert get_correlation_id() is None

    def test_scope_reuses_outer_id(self):
        set_correlation_id("outer-run")
        try:
            with correlation_scope("sync") as correlation_id:
                assert correlation_id == "outer-run"
            assert get_correlation_id() == "outer-run"
        finally:
            clear_correlation_id()

    def test_copied_context_reaches_worker_threads(self):
        clear_correlation_id()
        with correlation_scope("sync") as correlation_id:
            with ThreadPoolExecutor(max_workers=1) as executor:
                seen = executor.submit(copy_context().run, get_correlation_id).result()
        assert seen == correlation_id


class TestCorrelationIdFilter:

    def test_adds_current_id(self):
        set_correlation_id("sync-abc")
        try:
            record = make_record()
            assert CorrelationIdFilter().filter(record) is True
            assert record.correlation_id == "sync-abc"
        finally:
            clear_correlation_id()

    def test_placeholder_without_id(self):
        clear_correlation_id()
        record = make_record()
        CorrelationIdFilter().filter(record)
        assert record.correlation_id == NO_CORRELATION_ID


class TestJsonFormatter:

    def test_formats_record(self):
        record = make_record("Saved 3 quotes", correlation_id="sync-abc", config={"level": "INFO"})

        entry = json.loads(JsonFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "quotesync.test"
        assert entry["message"] == "Saved 3 quotes"
        assert entry["correlation_id"] == "sync-abc"
        assert entry["extra"] == {"config": {"level": "INFO"}}

    def test_non_serializable_extra_is_stringified(self):
        record = make_record(symbol_set={"AAPL"})

        entry = json.loads(JsonFormatter().format(record))

        assert entry["extra"]["symbol_set"] == "{'AAPL'}"
        assert entry["correlation_id"] == NO_CORRELATION_ID

    def test_keeps_non_ascii(self):
        output = JsonFormatter().format(make_record("贵州茅台"))
        assert "贵州茅台" in output


class TestSetupLogging:

    @pytest.mark.parametrize("name,level", [
        ("debug", logging.DEBUG),
        (" WARN ", logging.WARNING),
        ("CRITICAL", logging.CRITICAL),
    ])
    def test_get_log_level(self, name, level):
        assert _get_log_level(name) == level

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            _get_log_level("LOUD")

    def test_setup_installs_single_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="DEBUG", log_format="json")

            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
