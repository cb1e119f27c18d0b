# quotesync/services/market_data/base.py
"""
Abstract interface for market data providers.

This module defines the contract that all market data providers must follow:

- latest_quote(symbol, fallback_currency) -> Quote
- historical_quotes(symbol, start, end, fallback_currency) -> list[Quote]
- historical_quotes_bulk(symbols_with_currencies, start, end) -> BulkQuotesResult
- search(query) / get_asset_profile(symbol) (optional)

The public methods are implemented once here. Subclasses implement the
provider-specific fetch primitives and inherit:

- Symbol format checks (UnsupportedSymbolError before any network call)
- Retry with exponential backoff for transient errors
- The "latest endpoint, then trailing history" fallback for latest quotes
- Batched, concurrent bulk fetching with per-symbol failure collection

Design Principles:
- Per-symbol failures in bulk calls are returned as data, never raised
- NoDataError ("nothing in this window") is not a failure
- Providers are stateless apart from their HTTP client, so one instance can
  serve concurrent readers
"""

import contextvars
import logging
import math
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import TypeVar, Callable, Any

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from quotesync.config import settings
from quotesync.services.constants import LATEST_QUOTE_FALLBACK_DAYS, PRICE_PRECISION
from quotesync.services.exceptions import (
    MarketDataError,
    NoDataError,
    ParsingError,
    ProviderUnavailableError,
    RateLimitError,
    UnauthorizedError,
    UnsupportedSymbolError,
)
from quotesync.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

# Type variable for generic return type in retry method
T = TypeVar('T')


# =============================================================================
# DATA CLASSES - QUOTES
# =============================================================================

@dataclass(frozen=True)
class Quote:
    """
    One daily OHLCV quote.

    Identity is (symbol, day, data_source). Prices are fixed-point Decimals.
    Use dataclasses.replace() to derive modified copies (e.g. a forward-filled
    quote with a new timestamp).

    Attributes:
        symbol: Canonical symbol (e.g., "600519.SH")
        timestamp: UTC instant of the quote
        open/high/low/close/adjclose: Prices
        volume: Traded volume (0 when the source has none, e.g. fund NAVs)
        currency: ISO currency code of the prices
        data_source: Identity of the source (e.g., "YAHOO", "MANUAL")
        created_at: When the quote was fetched/built
    """

    symbol: str
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    adjclose: Decimal
    volume: Decimal
    currency: str
    data_source: str
    created_at: datetime = field(default_factory=utc_now)

    @property
    def day(self) -> date:
        """UTC calendar day of the quote."""
        return self.timestamp.astimezone(timezone.utc).date()

    @property
    def id(self) -> str:
        return f"{self.day.strftime('%Y%m%d')}_{self.symbol}"


@dataclass(frozen=True)
class QuoteRequest:
    """Planning unit: one symbol to sync from one source."""

    symbol: str
    data_source: str
    currency: str


# =============================================================================
# DATA CLASSES - METADATA
# =============================================================================

@dataclass(frozen=True)
class AssetProfile:
    """
    Provider-sourced descriptive metadata.

    Used to backfill missing asset names and classifications. Never
    authoritative for prices.
    """

    symbol: str
    name: str | None
    currency: str
    data_source: str
    asset_type: str | None = None
    asset_class: str | None = None
    asset_sub_class: str | None = None
    sectors: str | None = None
    countries: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class QuoteSummary:
    """Symbol search hit."""

    symbol: str
    name: str | None
    exchange: str | None = None
    asset_type: str | None = None
    score: float = 0.0
    data_source: str | None = None


# =============================================================================
# DATA CLASSES - BULK RESULTS
# =============================================================================

@dataclass(frozen=True)
class BulkFailure:
    """A symbol that could not be fetched in a bulk call."""

    symbol: str
    currency: str
    reason: str


@dataclass
class BulkQuotesResult:
    """
    Result of a bulk historical fetch.

    Tracks which symbols succeeded and which failed, allowing partial success.
    Symbols with no data in the window appear in neither list.
    """

    quotes: list[Quote] = field(default_factory=list)
    failures: list[BulkFailure] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def failed_symbols(self) -> list[str]:
        return [f.symbol for f in self.failures]

    @property
    def all_successful(self) -> bool:
        return self.failure_count == 0

    def extend(self, other: "BulkQuotesResult") -> None:
        self.quotes.extend(other.quotes)
        self.failures.extend(other.failures)


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Retry Behavior:
        `_execute_with_retry` implements exponential backoff. Subclasses can
        override the retry configuration by setting class attributes:

        - MAX_RETRY_ATTEMPTS: Total attempts (default: 3)
        - RETRY_MIN_WAIT: Minimum wait in seconds (default: 1)
        - RETRY_MAX_WAIT: Maximum wait in seconds (default: 10)
        - RETRY_MULTIPLIER: Exponential multiplier (default: 1)

    Retryable Exceptions:
        - ProviderUnavailableError: Network issues, timeouts, server errors
        - RateLimitError: API rate limit exceeded

    Bulk Behavior:
        - BULK_BATCH_SIZE symbols are fetched concurrently per batch
        - BULK_BATCH_PAUSE_SECONDS sleep between full batches
    """

    # =========================================================================
    # RETRY CONFIGURATION (can be overridden by subclasses)
    # =========================================================================

    MAX_RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT: int = 1
    RETRY_MAX_WAIT: int = 10
    RETRY_MULTIPLIER: int = 1

    # =========================================================================
    # BATCH CONFIGURATION (can be overridden by subclasses)
    # =========================================================================

    BULK_BATCH_SIZE: int = 5
    BULK_BATCH_PAUSE_SECONDS: float = 0.0

    # Currency used when the caller does not know the instrument's currency
    DEFAULT_CURRENCY: str = "USD"

    # =========================================================================
    # ABSTRACT PROPERTIES AND METHODS
    # =========================================================================

    @property
    @abstractmethod
    def id(self) -> str:
        """
        Stable identity of this provider (e.g., "YAHOO", "EASTMONEY_CN").

        Matches the data_source stored on assets and quotes.
        """
        pass

    @property
    @abstractmethod
    def priority(self) -> int:
        """Ordering hint; lower is preferred."""
        pass

    @abstractmethod
    def supports_symbol(self, symbol: str) -> bool:
        """Whether the symbol is in this provider's addressable format."""
        pass

    @abstractmethod
    def _fetch_latest_quote(self, symbol: str, currency: str) -> Quote:
        """
        Fetch from the provider's lightweight "latest" endpoint.

        Raises:
            NoDataError: Empty payload
            MarketDataError: Any other provider failure
        """
        pass

    @abstractmethod
    def _fetch_historical_quotes(
            self,
            symbol: str,
            start: datetime,
            end: datetime,
            currency: str,
    ) -> list[Quote]:
        """
        Fetch daily quotes in [start, end].

        Raises:
            NoDataError: Provider has nothing in the window
            MarketDataError: Any other provider failure
        """
        pass

    # =========================================================================
    # PUBLIC CAPABILITIES
    # =========================================================================

    def latest_quote(self, symbol: str, fallback_currency: str = "") -> Quote:
        """
        Fetch the most recent quote for a symbol.

        Tries the latest endpoint first. On failure (or an empty payload),
        pulls the trailing LATEST_QUOTE_FALLBACK_DAYS of history and returns
        its last entry. If that yields nothing, the original error is raised.

        Raises:
            UnsupportedSymbolError: Symbol outside this provider's format
            MarketDataError: Both the latest endpoint and the fallback failed
        """
        self._ensure_supported(symbol)
        currency = self._resolve_currency(fallback_currency)

        try:
            return self._execute_with_retry(self._fetch_latest_quote, symbol, currency)
        except MarketDataError as primary_error:
            logger.warning(
                f"{self.id} latest endpoint failed for {symbol} ({primary_error}). "
                f"Falling back to history."
            )
            try:
                fallback = self._latest_quote_from_history(symbol, currency)
            except MarketDataError as history_error:
                logger.warning(
                    f"{self.id} history fallback failed for {symbol}: {history_error}"
                )
                raise primary_error from history_error

            if fallback is None:
                raise
            return fallback

    def historical_quotes(
            self,
            symbol: str,
            start: datetime,
            end: datetime,
            fallback_currency: str = "",
    ) -> list[Quote]:
        """
        Fetch daily quotes between start and end, ascending by timestamp.

        Returns an empty list when start >= end.

        Raises:
            UnsupportedSymbolError: Symbol outside this provider's format
            NoDataError: Nothing in the window
            MarketDataError: Provider failure (after retries)
        """
        self._ensure_supported(symbol)
        if start >= end:
            return []

        currency = self._resolve_currency(fallback_currency)
        quotes = self._execute_with_retry(
            self._fetch_historical_quotes,
            symbol,
            start,
            end,
            currency,
        )
        return sorted(quotes, key=lambda q: q.timestamp)

    def historical_quotes_bulk(
            self,
            symbols_with_currencies: list[tuple[str, str]],
            start: datetime,
            end: datetime,
    ) -> BulkQuotesResult:
        """
        Fetch history for many symbols with independent per-symbol outcomes.

        Unsupported symbols fail immediately. Supported symbols are fetched in
        batches of BULK_BATCH_SIZE, concurrently within a batch, with a pause
        between full batches. One symbol's failure never affects siblings.
        """
        result = BulkQuotesResult()
        if not symbols_with_currencies or start >= end:
            return result

        supported: list[tuple[str, str]] = []
        for symbol, currency in symbols_with_currencies:
            if self.supports_symbol(symbol):
                supported.append((symbol, currency))
            else:
                result.failures.append(BulkFailure(
                    symbol=symbol,
                    currency=currency,
                    reason=f"Symbol '{symbol}' is not supported by {self.id}",
                ))

        for offset in range(0, len(supported), self.BULK_BATCH_SIZE):
            chunk = supported[offset:offset + self.BULK_BATCH_SIZE]
            self._fetch_bulk_chunk(chunk, start, end, result)

            has_more = offset + self.BULK_BATCH_SIZE < len(supported)
            if has_more and len(chunk) == self.BULK_BATCH_SIZE and self.BULK_BATCH_PAUSE_SECONDS > 0:
                time.sleep(self.BULK_BATCH_PAUSE_SECONDS)

        return result

    # =========================================================================
    # OPTIONAL METHODS (with default implementations)
    # =========================================================================

    def search(self, query: str) -> list[QuoteSummary]:
        """Symbol search. Providers without a search endpoint return no hits."""
        return []

    def get_asset_profile(self, symbol: str) -> AssetProfile:
        raise MarketDataError(
            f"{self.id} does not provide asset profiles",
            provider=self.id,
        )

    def close(self) -> None:
        """Release provider resources. Default: nothing to release."""

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _ensure_supported(self, symbol: str) -> None:
        if not self.supports_symbol(symbol):
            raise UnsupportedSymbolError(symbol=symbol, provider=self.id)

    def _resolve_currency(self, fallback_currency: str | None) -> str:
        if fallback_currency and fallback_currency.strip():
            return fallback_currency.strip().upper()
        return self.DEFAULT_CURRENCY

    def _latest_quote_from_history(self, symbol: str, currency: str) -> Quote | None:
        """Last entry of the trailing history window, or None if empty."""
        end = utc_now()
        start = end - timedelta(days=LATEST_QUOTE_FALLBACK_DAYS)
        history = self._execute_with_retry(
            self._fetch_historical_quotes,
            symbol,
            start,
            end,
            currency,
        )
        if not history:
            return None
        return max(history, key=lambda q: q.timestamp)

    def _fetch_bulk_chunk(
            self,
            chunk: list[tuple[str, str]],
            start: datetime,
            end: datetime,
            result: BulkQuotesResult,
    ) -> None:
        """Fetch one batch concurrently and fold outcomes into result."""
        with ThreadPoolExecutor(max_workers=len(chunk), thread_name_prefix=f"{self.id.lower()}-bulk") as executor:
            # Each task runs in a copy of the caller's context (correlation id)
            futures = [
                executor.submit(
                    contextvars.copy_context().run,
                    self.historical_quotes,
                    symbol,
                    start,
                    end,
                    currency,
                )
                for symbol, currency in chunk
            ]

            for (symbol, currency), future in zip(chunk, futures):
                try:
                    result.quotes.extend(future.result())
                except NoDataError:
                    logger.debug(f"{self.id} has no new history in requested window for {symbol}")
                except MarketDataError as e:
                    logger.warning(f"{self.id} failed to fetch history for {symbol}: {e}")
                    result.failures.append(BulkFailure(symbol=symbol, currency=currency, reason=str(e)))
                except Exception as e:
                    logger.error(f"{self.id} unexpected error fetching history for {symbol}: {e}")
                    result.failures.append(BulkFailure(symbol=symbol, currency=currency, reason=str(e)))

    # =========================================================================
    # RETRY HELPER METHOD
    # =========================================================================

    def _execute_with_retry(
            self,
            func: Callable[..., T],
            *args: Any,
            **kwargs: Any,
    ) -> T:
        """
        Execute a function with retry logic for transient failures.

        Uses exponential backoff for retryable exceptions:
        - ProviderUnavailableError
        - RateLimitError

        Does NOT retry on anything else (unsupported symbol, no data,
        unauthorized, parse failures).

        Raises:
            The last exception if all retries fail
        """

        @retry(
            stop=stop_after_attempt(self.MAX_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=self.RETRY_MULTIPLIER,
                min=self.RETRY_MIN_WAIT,
                max=self.RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type((ProviderUnavailableError, RateLimitError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _inner() -> T:
            return func(*args, **kwargs)

        return _inner()


# =============================================================================
# HTTP PROVIDER BASE
# =============================================================================

class HttpMarketDataProvider(MarketDataProvider, ABC):
    """
    Base for providers reached over plain HTTPS JSON/text endpoints.

    Owns one httpx.Client (thread-safe, shared by bulk workers) and maps
    transport failures and HTTP statuses onto the exception hierarchy:

        transport error / timeout -> ProviderUnavailableError (retried)
        5xx                       -> ProviderUnavailableError (retried)
        429                       -> RateLimitError (retried)
        401 / 403                 -> UnauthorizedError
        other non-2xx             -> MarketDataError
    """

    REFERER: str | None = None

    def __init__(
            self,
            client: httpx.Client | None = None,
            timeout: float | None = None,
            user_agent: str | None = None,
    ) -> None:
        headers = {"User-Agent": user_agent or settings.http_user_agent}
        if self.REFERER:
            headers["Referer"] = self.REFERER

        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout or settings.http_timeout_seconds),
            follow_redirects=True,
        )
        self._headers = headers

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _get(
            self,
            url: str,
            params: dict[str, str] | None = None,
            headers: dict[str, str] | None = None,
            context: str = "",
    ) -> httpx.Response:
        """GET with status mapping. `context` is only used in error messages."""
        merged_headers = {**self._headers, **(headers or {})}
        try:
            response = self._client.get(url, params=params, headers=merged_headers)
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(provider=self.id, reason=f"{context} {e}".strip())

        status = response.status_code
        if 200 <= status < 300:
            return response

        detail = f"{context} HTTP {status}".strip()
        if status in (401, 403):
            raise UnauthorizedError(provider=self.id, reason=detail)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                provider=self.id,
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if status >= 500:
            raise ProviderUnavailableError(provider=self.id, reason=detail)
        raise MarketDataError(f"{self.id} request failed: {detail}", provider=self.id)

    def _get_json(self, url: str, params: dict[str, str] | None = None, context: str = "") -> Any:
        response = self._get(url, params=params, context=context)
        try:
            return response.json()
        except ValueError as e:
            raise ParsingError(provider=self.id, reason=f"{context} invalid JSON: {e}".strip())


# =============================================================================
# NUMERIC HELPERS
# =============================================================================

def to_decimal(value: Any, precision: Decimal | None = PRICE_PRECISION) -> Decimal | None:
    """
    Convert a provider value (float, int, numeric string) to Decimal.

    Floats go through str() so 0.1 stays 0.1. Returns None for None, NaN,
    blank and "--" placeholders.

    Raises:
        ValueError: If the value is present but not numeric
    """
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        value = str(value)
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value or value == "--":
            return None

    try:
        result = Decimal(str(value))
        if not result.is_finite():
            return None
        if precision is not None:
            result = result.quantize(precision)
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a decimal value: {value!r}") from e

    return result
