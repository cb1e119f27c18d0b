# tests/services/test_provider_base.py
"""
Tests for behavior shared by every MarketDataProvider.

This module tests:
- Retry of transient errors (and no retry of permanent ones)
- Latest quote fallback to trailing history
- Bulk fetching with per-symbol failure isolation
- Correlation id propagation into bulk worker threads
- to_decimal conversion
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

from quotesync.services.exceptions import (
    NoDataError,
    ParsingError,
    ProviderUnavailableError,
    UnsupportedSymbolError,
)
from quotesync.services.market_data.base import BulkQuotesResult, Quote, to_decimal
from quotesync.utils.context import correlation_scope, get_correlation_id
from quotesync.utils.date_utils import end_of_day, start_of_day, utc_now
from tests.conftest import MockMarketDataProvider, make_quote


class RetryingProvider(MockMarketDataProvider):
    MAX_RETRY_ATTEMPTS = 3


# =============================================================================
# RETRY
# =============================================================================

class TestRetry:
    """Tests for _execute_with_retry()."""

    def test_transient_error_is_retried(self):
        provider = RetryingProvider()
        day = date(2024, 6, 3)
        quote = make_quote("AAPL", day)
        calls = {"count": 0}

        def flaky(symbol, start, end, currency):
            calls["count"] += 1
            if calls["count"] < 3:
                raise ProviderUnavailableError(provider="MOCK", reason="timeout")
            return [quote]

        with patch.object(provider, "_fetch_historical_quotes", side_effect=flaky):
            quotes = provider.historical_quotes("AAPL", start_of_day(day), end_of_day(day))

        assert quotes == [quote]
        assert calls["count"] == 3

    def test_permanent_error_is_not_retried(self):
        provider = RetryingProvider()
        day = date(2024, 6, 3)
        provider.add_error("AAPL", ParsingError(provider="MOCK", reason="bad payload"))

        with pytest.raises(ParsingError):
            provider.historical_quotes("AAPL", start_of_day(day), end_of_day(day))

        assert len(provider.history_calls) == 1

    def test_gives_up_after_max_attempts(self):
        provider = RetryingProvider()
        day = date(2024, 6, 3)
        provider.add_error("AAPL", ProviderUnavailableError(provider="MOCK", reason="down"))

        with pytest.raises(ProviderUnavailableError):
            provider.historical_quotes("AAPL", start_of_day(day), end_of_day(day))

        assert len(provider.history_calls) == 3


# =============================================================================
# SINGLE SYMBOL
# =============================================================================

class TestSingleSymbol:

    def test_unsupported_symbol_fails_before_fetch(self):
        provider = MockMarketDataProvider(supported_suffix=".SH")

        with pytest.raises(UnsupportedSymbolError):
            provider.latest_quote("AAPL")
        assert provider.history_calls == []

    def test_empty_window_returns_nothing(self):
        provider = MockMarketDataProvider()
        instant = start_of_day(date(2024, 6, 3))

        assert provider.historical_quotes("AAPL", instant, instant) == []
        assert provider.history_calls == []

    def test_history_sorted_ascending(self):
        provider = MockMarketDataProvider()
        provider.add_history("AAPL", [make_quote("AAPL", date(2024, 6, 4)), make_quote("AAPL", date(2024, 6, 3))])

        quotes = provider.historical_quotes(
            "AAPL", start_of_day(date(2024, 6, 1)), end_of_day(date(2024, 6, 5))
        )

        assert [q.day for q in quotes] == [date(2024, 6, 3), date(2024, 6, 4)]

    def test_latest_quote_from_latest_endpoint(self):
        provider = MockMarketDataProvider()
        quote = make_quote("AAPL", date(2024, 6, 3))
        provider.add_latest("AAPL", quote)

        assert provider.latest_quote("AAPL") == quote

    def test_latest_quote_falls_back_to_history(self):
        provider = MockMarketDataProvider()
        provider.add_latest_error("AAPL", ProviderUnavailableError(provider="MOCK", reason="down"))
        recent = utc_now().date() - timedelta(days=2)
        older = recent - timedelta(days=3)
        provider.add_history("AAPL", [make_quote("AAPL", older, "9"), make_quote("AAPL", recent, "10")])

        quote = provider.latest_quote("AAPL")

        assert quote.close == Decimal("10")

    def test_latest_quote_raises_original_error_without_history(self):
        provider = MockMarketDataProvider()
        provider.add_latest_error("AAPL", ProviderUnavailableError(provider="MOCK", reason="down"))

        with pytest.raises(ProviderUnavailableError):
            provider.latest_quote("AAPL")

    def test_default_currency_when_none_given(self):
        provider = MockMarketDataProvider()
        assert provider._resolve_currency("") == "USD"
        assert provider._resolve_currency(" hkd ") == "HKD"


# =============================================================================
# BULK
# =============================================================================

class TestBulk:
    """Tests for historical_quotes_bulk()."""

    def test_failure_isolated_per_symbol(self):
        provider = MockMarketDataProvider(supported_suffix=".HK")
        day = date(2024, 6, 3)
        provider.add_history("0700.HK", [make_quote("0700.HK", day)])
        provider.add_error("0005.HK", ProviderUnavailableError(provider="MOCK", reason="down"))

        result = provider.historical_quotes_bulk(
            [("0700.HK", "HKD"), ("0005.HK", "HKD"), ("AAPL", "USD"), ("0001.HK", "HKD")],
            start_of_day(day),
            end_of_day(day),
        )

        assert [q.symbol for q in result.quotes] == ["0700.HK"]
        assert sorted(result.failed_symbols) == ["0005.HK", "AAPL"]
        assert not result.all_successful

    def test_no_data_is_not_a_failure(self):
        provider = MockMarketDataProvider()
        day = date(2024, 6, 3)
        provider.add_error("AAPL", NoDataError(symbol="AAPL", provider="MOCK"))

        result = provider.historical_quotes_bulk([("AAPL", "USD")], start_of_day(day), end_of_day(day))

        assert result.quotes == []
        assert result.all_successful

    def test_batches_cover_every_symbol(self):
        provider = MockMarketDataProvider()
        provider.BULK_BATCH_SIZE = 2
        day = date(2024, 6, 3)
        symbols = [f"S{i}" for i in range(5)]
        for symbol in symbols:
            provider.add_history(symbol, [make_quote(symbol, day)])

        result = provider.historical_quotes_bulk(
            [(s, "USD") for s in symbols], start_of_day(day), end_of_day(day)
        )

        assert sorted(q.symbol for q in result.quotes) == symbols

    @pytest.mark.parametrize("count,pauses", [(4, 1), (5, 2), (2, 0)])
    def test_pauses_only_between_full_batches(self, count, pauses):
        provider = MockMarketDataProvider()
        provider.BULK_BATCH_SIZE = 2
        provider.BULK_BATCH_PAUSE_SECONDS = 0.25
        day = date(2024, 6, 3)
        symbols = [f"S{i}" for i in range(count)]
        for symbol in symbols:
            provider.add_history(symbol, [make_quote(symbol, day)])

        with patch("quotesync.services.market_data.base.time.sleep") as mock_sleep:
            provider.historical_quotes_bulk([(s, "USD") for s in symbols], start_of_day(day), end_of_day(day))

        assert mock_sleep.call_count == pauses
        for call in mock_sleep.call_args_list:
            assert call.args == (0.25,)

    def test_workers_see_the_correlation_id(self):
        provider = MockMarketDataProvider()
        day = date(2024, 6, 3)
        seen: list[str | None] = []

        def capture(symbol, start, end, currency):
            seen.append(get_correlation_id())
            return [make_quote(symbol, day)]

        with patch.object(provider, "_fetch_historical_quotes", side_effect=capture):
            with correlation_scope("sync") as correlation_id:
                provider.historical_quotes_bulk(
                    [("AAPL", "USD"), ("MSFT", "USD")], start_of_day(day), end_of_day(day)
                )

        assert seen == [correlation_id, correlation_id]

    def test_empty_request(self):
        provider = MockMarketDataProvider()
        instant = start_of_day(date(2024, 6, 3))
        result = provider.historical_quotes_bulk([], instant, instant + timedelta(days=1))
        assert result == BulkQuotesResult()


# =============================================================================
# QUOTE AND DECIMALS
# =============================================================================

class TestQuote:

    def test_day_and_id(self):
        quote = make_quote("AAPL", date(2024, 6, 3), timestamp=datetime(2024, 6, 3, 23, 0, tzinfo=timezone.utc))
        assert quote.day == date(2024, 6, 3)
        assert quote.id == "20240603_AAPL"

    def test_quote_is_immutable(self):
        quote = make_quote("AAPL", date(2024, 6, 3))
        with pytest.raises(AttributeError):
            quote.close = Decimal("1")  # type: ignore[misc]

    def test_created_at_defaults_to_now(self):
        quote = make_quote("AAPL", date(2024, 6, 3))
        assert isinstance(quote, Quote)
        assert (utc_now() - quote.created_at) < timedelta(minutes=1)


class TestToDecimal:

    @pytest.mark.parametrize("raw,expected", [
        (0.1, Decimal("0.10000000")),
        ("1,234.5", Decimal("1234.50000000")),
        (7, Decimal("7.00000000")),
        ("  12.345678901 ", Decimal("12.34567890")),
    ])
    def test_converts(self, raw, expected):
        assert to_decimal(raw) == expected

    @pytest.mark.parametrize("raw", [None, float("nan"), float("inf"), "", "--"])
    def test_missing_values(self, raw):
        assert to_decimal(raw) is None

    def test_without_precision(self):
        assert to_decimal("31234", precision=None) == Decimal("31234")

    def test_non_numeric_raises(self):
        with pytest.raises(ValueError):
            to_decimal("abc")
