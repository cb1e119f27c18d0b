# quotesync/services/market_data/yahoo.py
"""
Yahoo Finance market data provider implementation.

This module implements the MarketDataProvider interface using the yfinance library.
Yahoo Finance is a free data source suitable for personal/educational use.

Key features:
- Canonical symbol -> Yahoo symbol mapping (".SH" is ".SS" on Yahoo)
- Error classification from yfinance exception text
- Retry mechanism inherited from base class
- Symbol search and asset profiles

Limitations:
- Rate limits (not officially documented, but exist)
- Data may be delayed (15-20 minutes for some markets)
- Mutual fund codes (".FUND") are not served; those belong to TIANTIAN_FUND
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import yfinance as yf

from quotesync.models import DataSource
from quotesync.services.constants import (
    CASH_SYMBOL_PREFIX,
    YAHOO_BULK_BATCH_SIZE,
    YAHOO_BULK_PAUSE_SECONDS,
)
from quotesync.services.exceptions import (
    MarketDataError,
    NoDataError,
    ProviderUnavailableError,
    RateLimitError,
    TickerNotFoundError,
)
from quotesync.services.market_data.base import (
    AssetProfile,
    MarketDataProvider,
    Quote,
    QuoteSummary,
    to_decimal,
)
from quotesync.utils.date_utils import start_of_day

logger = logging.getLogger(__name__)


class YahooFinanceProvider(MarketDataProvider):
    """
    Yahoo Finance implementation of MarketDataProvider.

    Retry Behavior (inherited from MarketDataProvider):
        - Retries on ProviderUnavailableError and RateLimitError
        - Does NOT retry on TickerNotFoundError / NoDataError
        - Maximum 3 attempts (configurable via class attributes)

    Example:
        provider = YahooFinanceProvider()
        quotes = provider.historical_quotes("AAPL", start, end, "USD")
    """

    BULK_BATCH_SIZE = YAHOO_BULK_BATCH_SIZE
    BULK_BATCH_PAUSE_SECONDS = YAHOO_BULK_PAUSE_SECONDS

    # Canonical market suffix -> Yahoo suffix
    SUFFIX_MAPPING: dict[str, str] = {
        ".SH": ".SS",
    }

    # Yahoo quoteType -> asset class used on profiles
    QUOTE_TYPE_MAPPING: dict[str, str] = {
        "EQUITY": "Equity",
        "ETF": "Equity",
        "MUTUALFUND": "Equity",
        "INDEX": "Index",
        "CURRENCY": "Cash",
        "CRYPTOCURRENCY": "Cryptocurrency",
        "FUTURE": "Commodity",
    }

    def __init__(self, priority: int = 1) -> None:
        self._priority = priority
        logger.info(f"YahooFinanceProvider initialized (priority={priority})")

    @property
    def id(self) -> str:
        return DataSource.YAHOO.value

    @property
    def priority(self) -> int:
        return self._priority

    def supports_symbol(self, symbol: str) -> bool:
        normalized = symbol.strip().upper()
        if not normalized or normalized.startswith(CASH_SYMBOL_PREFIX):
            return False
        return not normalized.endswith(".FUND")

    # =========================================================================
    # QUOTES
    # =========================================================================

    def _fetch_latest_quote(self, symbol: str, currency: str) -> Quote:
        quotes = self._history(symbol, currency, period="5d")
        if not quotes:
            raise NoDataError(symbol=symbol, provider=self.id, detail="empty latest payload")
        return quotes[-1]

    def _fetch_historical_quotes(
            self,
            symbol: str,
            start: datetime,
            end: datetime,
            currency: str,
    ) -> list[Quote]:
        # Yahoo Finance end date is exclusive, so add 1 day
        yahoo_end = end.date() + timedelta(days=1)
        quotes = self._history(
            symbol,
            currency,
            start=start.date().isoformat(),
            end=yahoo_end.isoformat(),
        )
        if not quotes:
            raise NoDataError(symbol=symbol, provider=self.id, detail=f"{start.date()} to {end.date()}")
        return quotes

    def _history(self, symbol: str, currency: str, **kwargs: Any) -> list[Quote]:
        yahoo_symbol = self._to_yahoo_symbol(symbol)
        logger.debug(f"Fetching Yahoo history for {yahoo_symbol}: {kwargs}")

        try:
            df = yf.Ticker(yahoo_symbol).history(
                interval="1d",
                auto_adjust=False,  # raw prices; "Adj Close" carries the adjusted series
                **kwargs,
            )
        except Exception as e:
            raise self._classify_error(e, symbol)

        if df is None or df.empty:
            return []
        return self._dataframe_to_quotes(df, symbol, currency)

    def _dataframe_to_quotes(self, df, symbol: str, currency: str) -> list[Quote]:
        """
        Convert a yfinance history DataFrame to quotes.

        Rows without a close are skipped. Missing open/high/low fall back to
        the close price, a missing adjusted close to the close.
        """
        quotes = []

        for idx, row in df.iterrows():
            price_date = idx.date() if hasattr(idx, 'date') else idx
            try:
                close = to_decimal(row.get('Close'))
                if close is None:
                    logger.warning(f"Skipping {symbol} {price_date}: missing close price")
                    continue

                quotes.append(Quote(
                    symbol=symbol,
                    timestamp=start_of_day(price_date),
                    open=to_decimal(row.get('Open')) or close,
                    high=to_decimal(row.get('High')) or close,
                    low=to_decimal(row.get('Low')) or close,
                    close=close,
                    adjclose=to_decimal(row.get('Adj Close')) or close,
                    volume=to_decimal(row.get('Volume'), precision=None) or Decimal(0),
                    currency=currency,
                    data_source=self.id,
                ))
            except ValueError as e:
                logger.warning(f"Error parsing {symbol} row {price_date}: {e}")
                continue

        return quotes

    # =========================================================================
    # SEARCH AND PROFILE
    # =========================================================================

    def search(self, query: str) -> list[QuoteSummary]:
        query = query.strip()
        if not query:
            return []
        return self._execute_with_retry(self._search, query)

    def _search(self, query: str) -> list[QuoteSummary]:
        try:
            hits = yf.Search(query, max_results=10).quotes
        except Exception as e:
            raise self._classify_error(e, query)

        results = []
        for hit in hits or []:
            symbol = hit.get("symbol")
            if not symbol:
                continue
            results.append(QuoteSummary(
                symbol=symbol,
                name=hit.get("longname") or hit.get("shortname"),
                exchange=hit.get("exchange"),
                asset_type=hit.get("quoteType"),
                score=float(hit.get("score") or 0.0),
                data_source=self.id,
            ))
        return results

    def get_asset_profile(self, symbol: str) -> AssetProfile:
        self._ensure_supported(symbol)
        return self._execute_with_retry(self._fetch_asset_profile, symbol)

    def _fetch_asset_profile(self, symbol: str) -> AssetProfile:
        yahoo_symbol = self._to_yahoo_symbol(symbol)
        try:
            info = yf.Ticker(yahoo_symbol).info
        except Exception as e:
            raise self._classify_error(e, symbol)

        if not self._is_valid_ticker_info(info):
            raise TickerNotFoundError(ticker=symbol, provider=self.id)

        quote_type = info.get("quoteType", "EQUITY")
        return AssetProfile(
            symbol=symbol,
            name=info.get("longName") or info.get("shortName"),
            currency=(info.get("currency") or self.DEFAULT_CURRENCY).upper(),
            data_source=self.id,
            asset_type=quote_type,
            asset_class=self.QUOTE_TYPE_MAPPING.get(quote_type),
            asset_sub_class=info.get("category") or info.get("industry"),
            sectors=info.get("sector"),
            countries=info.get("country"),
        )

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _to_yahoo_symbol(self, symbol: str) -> str:
        normalized = symbol.strip().upper()
        for suffix, yahoo_suffix in self.SUFFIX_MAPPING.items():
            if normalized.endswith(suffix):
                return normalized[: -len(suffix)] + yahoo_suffix
        return normalized

    def _classify_error(self, error: Exception, symbol: str) -> MarketDataError:
        """Map a yfinance exception onto the provider error hierarchy."""
        error_str = str(error).lower()

        if "not found" in error_str or "delisted" in error_str:
            return TickerNotFoundError(ticker=symbol, provider=self.id)
        if "no data" in error_str:
            return NoDataError(symbol=symbol, provider=self.id, detail=str(error))
        if "rate limit" in error_str or "too many requests" in error_str:
            return RateLimitError(provider=self.id)

        logger.error(f"Yahoo Finance error for {symbol}: {error}")
        return ProviderUnavailableError(provider=self.id, reason=str(error))

    @staticmethod
    def _is_valid_ticker_info(info: dict | None) -> bool:
        """
        Yahoo returns an info dict even for invalid tickers, but it lacks
        meaningful data. We check for price or name to validate.
        """
        if not info:
            return False
        return bool(
            info.get("regularMarketPrice")
            or info.get("shortName")
            or info.get("longName")
        )
