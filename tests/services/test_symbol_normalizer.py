# tests/services/test_symbol_normalizer.py
"""
Tests for symbol canonicalization and provider inference.
"""

import pytest

from quotesync.models import DataSource
from quotesync.services.symbol_normalizer import (
    NormalizeOptions,
    infer_source,
    is_cash_symbol,
    normalize,
)


# =============================================================================
# NORMALIZE
# =============================================================================

class TestNormalize:
    """Tests for normalize()."""

    @pytest.mark.parametrize("raw,expected", [
        ("aapl.us", "AAPL"),
        ("  msft  ", "MSFT"),
        ("600519.SS", "600519.SH"),
        ("600519.sh", "600519.SH"),
        ("000001.sz", "000001.SZ"),
        ("00700.HK", "0700.HK"),
        ("5.hk", "0005.HK"),
        ("09988.HK", "9988.HK"),
        ("12345.HK", "12345.HK"),
        ("161039.fund", "161039.FUND"),
    ])
    def test_canonical_forms(self, raw, expected):
        """Market suffixes are canonicalized per market."""
        assert normalize(raw) == expected

    @pytest.mark.parametrize("raw", ["$CASH-USD", "EURUSD=X", "hkdusd=x"])
    def test_cash_and_fx_pass_through(self, raw):
        """Cash and FX pair symbols are only uppercased."""
        assert normalize(raw) == raw.upper()

    def test_unrecognized_market_returned_uppercased(self):
        assert normalize("vod.l") == "VOD.L"

    def test_invalid_code_for_market_returned_uppercased(self):
        """A non 6-digit code under a China market is left alone."""
        assert normalize("abc.sh") == "ABC.SH"

    def test_bare_six_digit_code_is_ambiguous_by_default(self):
        assert normalize("161039") == "161039"

    def test_bare_six_digit_code_as_fund_when_enabled(self):
        options = NormalizeOptions(treat_bare_six_digit_as_fund=True)
        assert normalize("161039", options) == "161039.FUND"

    def test_empty_symbol(self):
        assert normalize("   ") == ""

    @pytest.mark.parametrize("raw", [
        "aapl.us", "600519.SS", "00700.HK", "161039.fund", "EURUSD=X",
        "$CASH-HKD", "vod.l", "5.HK", "000001.SZ", "BRK.B",
    ])
    def test_idempotent(self, raw):
        """normalize(normalize(x)) == normalize(x)."""
        once = normalize(raw)
        assert normalize(once) == once


# =============================================================================
# INFER SOURCE
# =============================================================================

class TestInferSource:
    """Tests for infer_source()."""

    @pytest.mark.parametrize("symbol", ["600519.SH", "600519.SS", "000001.SZ", "510300.sh"])
    def test_a_shares_belong_to_eastmoney(self, symbol):
        assert infer_source(symbol) == DataSource.EASTMONEY_CN.value

    def test_funds_belong_to_tiantian(self):
        assert infer_source("161039.FUND") == DataSource.TIANTIAN_FUND.value

    @pytest.mark.parametrize("symbol", [
        "EURUSD=X",
        "$CASH-USD",
        "AAPL",
        "0700.HK",
        "161039",
        "12345.SH",
        "",
    ])
    def test_unclassified_symbols(self, symbol):
        """Returns None so the configured source is kept."""
        assert infer_source(symbol) is None


class TestIsCashSymbol:

    def test_cash_marker(self):
        assert is_cash_symbol(" $cash-usd ")

    def test_regular_symbol(self):
        assert not is_cash_symbol("AAPL")
